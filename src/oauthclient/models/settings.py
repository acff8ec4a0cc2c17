"""Client configuration for the OAuth2 protocol client.

Settings can be provided programmatically or loaded from environment
variables. Endpoint fields left unset are filled in by discovery or derived
from the server URL by convention.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from oauthclient.models.errors import ConfigurationError

CLIENT_SECRET_BASIC = "client_secret_basic"
CLIENT_SECRET_POST = "client_secret_post"

SUPPORTED_AUTH_METHODS = (CLIENT_SECRET_BASIC, CLIENT_SECRET_POST)


@dataclass
class ClientSettings:
    """OAuth2 client settings.

    Mutable so discovery can fill in endpoints and the authentication method
    once, without recreating the client.

    Attributes:
        client_id: OAuth2 client identifier
        client_secret: Client secret for confidential clients
        server: Authorization server base URL, used to resolve relative
            endpoints and to guess endpoints when discovery has nothing
        authorization_endpoint: Explicit authorization endpoint
        token_endpoint: Explicit token endpoint
        introspection_endpoint: Explicit introspection endpoint (RFC 7662)
        revocation_endpoint: Explicit revocation endpoint (RFC 7009)
        discovery_endpoint: Explicit server metadata URL (RFC 8414)
        authentication_method: ``client_secret_basic`` or
            ``client_secret_post``; chosen automatically when unset
        timeout: HTTP timeout in seconds for the default HTTP client
    """

    client_id: str
    client_secret: str | None = None
    server: str | None = None

    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    introspection_endpoint: str | None = None
    revocation_endpoint: str | None = None
    discovery_endpoint: str | None = None

    authentication_method: str | None = None
    timeout: float = 30.0

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if not self.client_id:
            raise ConfigurationError("client_id cannot be empty")

        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")

        if (
            self.authentication_method is not None
            and self.authentication_method not in SUPPORTED_AUTH_METHODS
        ):
            raise ConfigurationError(
                f"Unsupported authentication method: {self.authentication_method}. "
                f"Supported methods: {', '.join(SUPPORTED_AUTH_METHODS)}"
            )

    @classmethod
    def from_env(cls, prefix: str = "OAUTH2_") -> ClientSettings:
        """Load settings from environment variables.

        Required environment variables:
            {prefix}CLIENT_ID: OAuth2 client identifier

        Optional environment variables:
            {prefix}CLIENT_SECRET, {prefix}SERVER,
            {prefix}AUTHORIZATION_ENDPOINT, {prefix}TOKEN_ENDPOINT,
            {prefix}INTROSPECTION_ENDPOINT, {prefix}REVOCATION_ENDPOINT,
            {prefix}DISCOVERY_ENDPOINT, {prefix}AUTHENTICATION_METHOD,
            {prefix}TIMEOUT

        Args:
            prefix: Prefix shared by all variable names

        Returns:
            ClientSettings instance

        Raises:
            ConfigurationError: If the client id is missing or a value is invalid
        """
        client_id = os.environ.get(f"{prefix}CLIENT_ID")
        if not client_id:
            raise ConfigurationError(
                f"Missing OAuth2 client id. Set {prefix}CLIENT_ID "
                f"(and optionally {prefix}CLIENT_SECRET, {prefix}SERVER)."
            )

        raw_timeout = os.environ.get(f"{prefix}TIMEOUT", "30")
        try:
            timeout = float(raw_timeout)
        except ValueError as e:
            raise ConfigurationError(
                f"{prefix}TIMEOUT must be a number, got {raw_timeout!r}"
            ) from e

        return cls(
            client_id=client_id,
            client_secret=os.environ.get(f"{prefix}CLIENT_SECRET") or None,
            server=os.environ.get(f"{prefix}SERVER") or None,
            authorization_endpoint=os.environ.get(f"{prefix}AUTHORIZATION_ENDPOINT")
            or None,
            token_endpoint=os.environ.get(f"{prefix}TOKEN_ENDPOINT") or None,
            introspection_endpoint=os.environ.get(f"{prefix}INTROSPECTION_ENDPOINT")
            or None,
            revocation_endpoint=os.environ.get(f"{prefix}REVOCATION_ENDPOINT")
            or None,
            discovery_endpoint=os.environ.get(f"{prefix}DISCOVERY_ENDPOINT") or None,
            authentication_method=os.environ.get(f"{prefix}AUTHENTICATION_METHOD")
            or None,
            timeout=timeout,
        )
