"""OAuth2 protocol client.

Knows the authorization server's endpoints (configured, discovered through
RFC 8414 metadata, or guessed by convention) and turns grants into token
endpoint requests (RFC 6749), plus token introspection (RFC 7662) and
revocation (RFC 7009).
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any
from urllib.parse import urljoin

import httpx
from pydantic import ValidationError

from oauthclient.models.discovery import (
    DISCOVERABLE_ENDPOINTS,
    EndpointKind,
    ServerMetadata,
)
from oauthclient.models.errors import (
    ConfigurationError,
    DiscoveryError,
    InvalidTokenResponseError,
    ProtocolError,
    TransportError,
    UsageError,
)
from oauthclient.models.settings import (
    CLIENT_SECRET_BASIC,
    CLIENT_SECRET_POST,
    ClientSettings,
)
from oauthclient.models.tokens import (
    ClientCredentialsRequest,
    FormData,
    PasswordRequest,
    RefreshTokenRequest,
    Token,
    TokenResponse,
)
from oauthclient.services.flow import AuthorizationCodeFlow


def _resolve(uri: str, base: str | None) -> str:
    if base is None:
        return uri
    return urljoin(base, uri)


class OAuth2ProtocolClient:
    """Performs OAuth2 token endpoint exchanges for a single client.

    Handles:
    - Endpoint resolution with one-time, best-effort discovery
    - Client authentication (client_secret_basic / client_secret_post)
    - Refresh token, client credentials and password grants
    - Error classification into ProtocolError and TransportError

    Nothing is retried here; retry policy belongs to the caller.
    """

    def __init__(
        self,
        settings: ClientSettings,
        http_client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        """Initialize the protocol client.

        Args:
            settings: Client configuration, updated in place by discovery
            http_client: HTTP client to send requests with. When omitted a
                client is created and closed by ``close()``
            logger: Diagnostics logger, defaults to this module's logger
        """
        self.settings = settings
        self.server_metadata: ServerMetadata | None = None

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=settings.timeout)
        self._logger = logger or logging.getLogger(__name__)
        self._discovery: asyncio.Future[None] | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """HTTP client used for all requests made by this client."""
        return self._http_client

    @property
    def authorization_code(self) -> AuthorizationCodeFlow:
        """Helper for the authorization_code grant."""
        return AuthorizationCodeFlow(self)

    async def resolve_endpoint(self, kind: EndpointKind | str) -> str:
        """Return the URL of an OAuth2 endpoint.

        Resolution order: configured value, then (except for the discovery
        endpoint itself) the value found by discovery, then the conventional
        path below the configured server URL.

        Args:
            kind: Endpoint to resolve

        Returns:
            Absolute endpoint URL when a server URL or absolute value is known

        Raises:
            ConfigurationError: If the endpoint cannot be determined
        """
        kind = EndpointKind(kind)

        configured = getattr(self.settings, kind.value)
        if configured is not None:
            return _resolve(configured, self.settings.server)

        if kind is not EndpointKind.DISCOVERY:
            # The discovery endpoint never triggers discovery, or it would recurse
            await self.discover()
            configured = getattr(self.settings, kind.value)
            if configured is not None:
                return _resolve(configured, self.settings.server)

        if not self.settings.server:
            raise ConfigurationError(
                f"Could not determine the location of {kind.value}. Either set "
                f"{kind.value} in the settings, or the server URL to let the "
                "client discover it."
            )

        return _resolve(kind.convention_path, self.settings.server)

    async def discover(self) -> None:
        """Fetch the authorization server metadata document.

        Runs at most once per client; concurrent callers share the same
        attempt. Failures are logged and otherwise ignored so that endpoint
        resolution can fall back to conventional paths.
        """
        if self._discovery is None:
            self._discovery = asyncio.ensure_future(self._run_discovery())
        await asyncio.shield(self._discovery)

    async def _run_discovery(self) -> None:
        try:
            discovery_url = await self.resolve_endpoint(EndpointKind.DISCOVERY)
        except ValueError as e:
            self._logger.warning(f"OAuth2 discovery endpoint is not a valid URL: {e}")
            return
        except ConfigurationError:
            self._logger.warning(
                "OAuth2 discovery endpoint could not be determined. Set either "
                "server or discovery_endpoint in the settings."
            )
            return

        try:
            metadata = await self._fetch_server_metadata(discovery_url)
        except DiscoveryError as e:
            self._logger.warning(f"OAuth2 discovery failed, using defaults: {e}")
            return

        self.server_metadata = metadata
        self._apply_server_metadata(metadata, discovery_url)

    async def _fetch_server_metadata(self, discovery_url: str) -> ServerMetadata:
        """Fetch and parse the metadata document.

        Raises:
            DiscoveryError: If the document cannot be fetched or parsed
        """
        self._logger.debug(f"Fetching authorization server metadata: {discovery_url}")

        try:
            response = await self._http_client.get(
                discovery_url, headers={"Accept": "application/json"}
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DiscoveryError(f"Could not reach {discovery_url}: {e}") from e

        if not response.is_success:
            raise DiscoveryError(
                f"{discovery_url} returned HTTP {response.status_code}"
            )

        content_type = response.headers.get("Content-Type", "")
        if not content_type.startswith("application/json"):
            raise DiscoveryError(
                f"{discovery_url} was not a JSON response "
                f"({content_type or 'no content type'})"
            )

        try:
            return ServerMetadata.model_validate_json(response.content)
        except ValidationError as e:
            raise DiscoveryError(f"Invalid metadata from {discovery_url}: {e}") from e

    def _apply_server_metadata(
        self, metadata: ServerMetadata, discovery_url: str
    ) -> None:
        """Fill unset settings from discovered metadata."""
        for kind in DISCOVERABLE_ENDPOINTS:
            advertised = metadata.endpoint(kind)
            if not advertised or getattr(self.settings, kind.value) is not None:
                continue
            setattr(self.settings, kind.value, _resolve(advertised, discovery_url))

        auth_methods = metadata.token_endpoint_auth_methods_supported
        if auth_methods and not self.settings.authentication_method:
            self.settings.authentication_method = auth_methods[0]

        self._logger.debug(
            f"Discovered endpoints: token={self.settings.token_endpoint}, "
            f"authorization={self.settings.authorization_endpoint}"
        )

    async def request(
        self, kind: EndpointKind | str, body: FormData
    ) -> dict[str, Any] | None:
        """Send an authenticated form POST to an OAuth2 endpoint.

        Args:
            kind: Endpoint to send the request to
            body: Form fields; the caller's mapping is not modified

        Returns:
            Parsed JSON body, or None for empty and non-JSON responses

        Raises:
            ConfigurationError: If the endpoint or auth method is unusable
            ProtocolError: If the server returned an OAuth2 error body
            TransportError: For other non-2xx responses and network failures
        """
        kind = EndpointKind(kind)
        uri = await self.resolve_endpoint(kind)

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        form_data: FormData = dict(body)

        auth_method = self._select_auth_method()
        if auth_method == CLIENT_SECRET_BASIC:
            headers["Authorization"] = self._basic_auth_header()
        elif auth_method == CLIENT_SECRET_POST:
            form_data["client_id"] = self.settings.client_id
            if self.settings.client_secret:
                form_data["client_secret"] = self.settings.client_secret
        else:
            raise ConfigurationError(
                f"Authentication method not supported: {auth_method}"
            )

        grant_type = form_data.get("grant_type", "none")
        self._logger.debug(
            f"OAuth2 request to {uri}: grant_type={grant_type}, "
            f"auth_method={auth_method}"
        )

        try:
            response = await self._http_client.post(
                uri, data=form_data, headers=headers
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error during request to {uri}: {e}") from e

        return self._parse_response(response)

    def _select_auth_method(self) -> str:
        # Without a secret only the client_id can be sent, and it goes in the body
        if not self.settings.client_secret:
            return CLIENT_SECRET_POST
        return self.settings.authentication_method or CLIENT_SECRET_BASIC

    def _basic_auth_header(self) -> str:
        credentials = f"{self.settings.client_id}:{self.settings.client_secret}"
        encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
        return f"Basic {encoded}"

    def _parse_response(self, response: httpx.Response) -> dict[str, Any] | None:
        """Parse an endpoint response, raising for non-2xx statuses."""
        response_body: Any = None
        content_type = response.headers.get("Content-Type", "")
        if response.status_code != 204 and content_type.startswith("application/json"):
            try:
                response_body = response.json()
            except ValueError as e:
                raise TransportError(
                    f"Invalid JSON in response from {response.request.url}: {e}",
                    response.status_code,
                ) from e

        if response.is_success:
            return response_body

        if isinstance(response_body, dict) and response_body.get("error"):
            error_code = str(response_body["error"])
            error_description = response_body.get("error_description")
            message = f"OAuth2 error {error_code}."
            if error_description:
                message += f" {error_description}"

            self._logger.warning(
                f"OAuth2 request failed with {response.status_code}: {message}"
            )
            raise ProtocolError(
                message, error_code, error_description, response.status_code
            )

        message = f"HTTP Error {response.status_code} {response.reason_phrase}"
        if response.status_code == 401 and self.settings.client_secret:
            message += (
                ". It's likely that the client_id and/or client_secret was incorrect"
            )

        self._logger.warning(f"OAuth2 request failed: {message}")
        raise TransportError(message, response.status_code)

    def grant_to_token(self, body: dict[str, Any] | None) -> Token:
        """Convert a token endpoint JSON body to a Token.

        Raises:
            InvalidTokenResponseError: If the body is not a token response
        """
        if body is None:
            raise InvalidTokenResponseError("Token endpoint returned no JSON body")

        try:
            token_response = TokenResponse.model_validate(body)
        except ValidationError as e:
            raise InvalidTokenResponseError(
                f"Invalid token response format: {e}"
            ) from e

        return token_response.to_token()

    async def refresh(
        self,
        token: Token,
        scope: list[str] | None = None,
        resource: str | list[str] | None = None,
    ) -> Token:
        """Exchange a refresh token for a new token (RFC 6749 Section 6).

        Raises:
            UsageError: If the token has no refresh token
        """
        if not token.refresh_token:
            raise UsageError(
                "This token didn't have a refresh_token. "
                "It's not possible to refresh this"
            )

        refresh_request = RefreshTokenRequest(
            refresh_token=token.refresh_token, scope=scope, resource=resource
        )
        body = await self.request(EndpointKind.TOKEN, refresh_request.to_form_data())
        return self.grant_to_token(body)

    async def client_credentials(
        self,
        scope: list[str] | None = None,
        resource: str | list[str] | None = None,
        extra_params: dict[str, str] | None = None,
    ) -> Token:
        """Obtain a token with the client_credentials grant.

        Raises:
            UsageError: If extra_params use reserved names or no client
                secret is configured
        """
        credentials_request = ClientCredentialsRequest(
            scope=scope, resource=resource, extra_params=extra_params
        )
        if not self.settings.client_secret:
            raise UsageError(
                "A client_secret must be provided to use client_credentials"
            )

        body = await self.request(
            EndpointKind.TOKEN, credentials_request.to_form_data()
        )
        return self.grant_to_token(body)

    async def password(
        self,
        username: str,
        password: str,
        scope: list[str] | None = None,
        resource: str | list[str] | None = None,
        extra_params: dict[str, str] | None = None,
    ) -> Token:
        """Obtain a token with the resource owner password grant."""
        password_request = PasswordRequest(
            username=username,
            password=password,
            scope=scope,
            resource=resource,
            extra_params=extra_params,
        )
        body = await self.request(EndpointKind.TOKEN, password_request.to_form_data())
        return self.grant_to_token(body)

    async def introspect(self, token: Token) -> dict[str, Any] | None:
        """Introspect an access token (RFC 7662).

        Returns:
            The introspection response, e.g. ``active``, ``scope``, ``client_id``
        """
        return await self.request(
            EndpointKind.INTROSPECTION,
            {"token": token.access_token, "token_type_hint": "access_token"},
        )

    async def revoke(self, token: Token, token_type_hint: str = "access_token") -> None:
        """Revoke an access or refresh token (RFC 7009).

        Args:
            token: Token to revoke
            token_type_hint: ``access_token`` or ``refresh_token``

        Raises:
            UsageError: If a refresh token revocation is requested for a
                token without one
        """
        token_value = token.access_token
        if token_type_hint == "refresh_token":
            if not token.refresh_token:
                raise UsageError("This token didn't have a refresh_token to revoke")
            token_value = token.refresh_token

        await self.request(
            EndpointKind.REVOCATION,
            {"token": token_value, "token_type_hint": token_type_hint},
        )

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> OAuth2ProtocolClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
