"""OAuth2 authorization code flow service.

Builds authorization URLs (with optional PKCE), validates the redirect back
from the authorization server, and exchanges the authorization code for a
token.
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

from oauthclient.models.discovery import EndpointKind
from oauthclient.models.errors import ProtocolError, UsageError
from oauthclient.models.flow import AuthorizationRequest, RedirectResult
from oauthclient.models.tokens import AuthorizationCodeRequest, Token
from oauthclient.primitives.pkce import get_code_challenge

if TYPE_CHECKING:
    from oauthclient.services.protocol import OAuth2ProtocolClient

logger = logging.getLogger(__name__)


def _as_list(value: str | list[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


class AuthorizationCodeFlow:
    """Authorization code grant helper bound to a protocol client.

    Handles:
    - Authorization URL construction with PKCE (RFC 7636)
    - Redirect validation (error, code and state parameters)
    - Code to token exchange with the code_verifier
    """

    def __init__(self, client: OAuth2ProtocolClient):
        self.client = client

    async def build_authorize_url(
        self,
        redirect_uri: str,
        state: str | None = None,
        scope: list[str] | None = None,
        resource: str | list[str] | None = None,
        code_verifier: str | None = None,
        extra_params: dict[str, str] | None = None,
    ) -> str:
        """Return the URL the user should open to start the flow.

        Args:
            redirect_uri: URI the server redirects back to
            state: Opaque value echoed back for CSRF protection
            scope: Scopes to request
            resource: One or more resource indicators (RFC 8707)
            code_verifier: PKCE verifier; its challenge is added to the URL
            extra_params: Additional query parameters

        Raises:
            ConfigurationError: If the authorization endpoint is unknown
            UsageError: If an extra parameter collides with a standard one
        """
        code_challenge = get_code_challenge(code_verifier) if code_verifier else None
        authorization_endpoint = await self.client.resolve_endpoint(
            EndpointKind.AUTHORIZATION
        )

        auth_request = AuthorizationRequest(
            authorization_endpoint=authorization_endpoint,
            client_id=self.client.settings.client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            state=state,
            scope=scope,
            resource=_as_list(resource),
            extra_params=extra_params,
        )
        return auth_request.build_authorization_url()

    def validate_redirect(
        self, url: str, expected_state: str | None = None
    ) -> RedirectResult:
        """Validate the URL the authorization server redirected back to.

        Args:
            url: Full redirect URL including the query string
            expected_state: State sent with the authorization request

        Returns:
            The authorization code and the granted scope, if returned

        Raises:
            ProtocolError: If the server redirected back with an error
            UsageError: If the code is missing or the state does not match
        """
        query_params = parse_qs(urlparse(url).query, keep_blank_values=True)

        def get_single_param(key: str) -> str | None:
            values = query_params.get(key, [])
            return values[0] if values else None

        error = get_single_param("error")
        if error is not None:
            error_description = get_single_param("error_description")
            raise ProtocolError(
                error_description or "OAuth2 error", error, error_description, 0
            )

        code = get_single_param("code")
        if code is None:
            raise UsageError(f"The url did not contain a code parameter {url}")

        if expected_state:
            returned_state = get_single_param("state") or ""
            if not secrets.compare_digest(expected_state, returned_state):
                raise UsageError(
                    'The "state" parameter in the url did not match the expected '
                    f"value of {expected_state}"
                )

        scope = get_single_param("scope")
        return RedirectResult(
            code=code, scope=scope.split(" ") if scope is not None else None
        )

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
        resource: str | list[str] | None = None,
        extra_params: dict[str, str] | None = None,
    ) -> Token:
        """Exchange an authorization code for a token (RFC 6749 Section 4.1.3).

        Raises:
            UsageError: If extra_params use reserved names
        """
        token_request = AuthorizationCodeRequest(
            code=code,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
            resource=resource,
            extra_params=extra_params,
        )

        logger.debug(
            f"Exchanging authorization code for client {self.client.settings.client_id}"
        )
        body = await self.client.request(
            EndpointKind.TOKEN, token_request.to_form_data()
        )
        return self.client.grant_to_token(body)

    async def token_from_redirect(
        self,
        url: str,
        redirect_uri: str,
        state: str | None = None,
        code_verifier: str | None = None,
        resource: str | list[str] | None = None,
        extra_params: dict[str, str] | None = None,
    ) -> Token:
        """Validate a redirect URL and exchange its code for a token."""
        AuthorizationCodeRequest.check_extra_params(extra_params)

        result = self.validate_redirect(url, expected_state=state)
        return await self.exchange_code(
            code=result.code,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
            resource=resource,
            extra_params=extra_params,
        )
