"""Discovery-related models for OAuth2 server metadata.

Contains the Authorization Server Metadata model (RFC 8414) and the names of
the endpoints a client can resolve.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class EndpointKind(str, Enum):
    """Endpoints the protocol client knows how to locate.

    Values match the ``ClientSettings`` attribute holding the endpoint.
    """

    AUTHORIZATION = "authorization_endpoint"
    TOKEN = "token_endpoint"
    INTROSPECTION = "introspection_endpoint"
    REVOCATION = "revocation_endpoint"
    DISCOVERY = "discovery_endpoint"

    @property
    def convention_path(self) -> str:
        """Path used when the endpoint has to be guessed from the server URL."""
        return _CONVENTION_PATHS[self]


_CONVENTION_PATHS = {
    EndpointKind.AUTHORIZATION: "/authorize",
    EndpointKind.TOKEN: "/token",
    EndpointKind.DISCOVERY: "/.well-known/oauth-authorization-server",
    EndpointKind.INTROSPECTION: "/introspect",
    EndpointKind.REVOCATION: "/revoke",
}

# Endpoints that discovery can fill in, in metadata field order
DISCOVERABLE_ENDPOINTS = (
    EndpointKind.AUTHORIZATION,
    EndpointKind.TOKEN,
    EndpointKind.INTROSPECTION,
    EndpointKind.REVOCATION,
)


class ServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414).

    Every field is optional: a partial document still contributes whatever
    endpoints it names.
    """

    model_config = ConfigDict(extra="allow")

    issuer: str | None = None
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    introspection_endpoint: str | None = None
    revocation_endpoint: str | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None
    scopes_supported: list[str] | None = None
    grant_types_supported: list[str] | None = None

    def endpoint(self, kind: EndpointKind) -> str | None:
        """Return the advertised URL for an endpoint, if any."""
        return getattr(self, kind.value, None)
