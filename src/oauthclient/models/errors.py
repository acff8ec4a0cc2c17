"""Exception hierarchy for OAuth2 client errors.

Provides specific exception types for the different failure modes so callers
can tell their own mistakes apart from server-side and network failures.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth2 client errors."""

    pass


class ConfigurationError(OAuth2Error):
    """Raised when the client is misconfigured.

    Covers endpoints that cannot be determined and invalid client settings.
    """

    pass


class UsageError(OAuth2Error):
    """Raised when an operation is called in a way that can never succeed.

    Examples are a missing client secret or refresh token, extra parameters
    that collide with reserved names, or a redirect with a mismatched state.
    """

    pass


class ProtocolError(OAuth2Error):
    """Raised when the server answers with a structured OAuth2 error.

    Attributes:
        error: OAuth2 error code, e.g. ``invalid_grant``
        error_description: Optional human readable description
        status: HTTP status of the response, 0 for redirect errors
    """

    def __init__(
        self,
        message: str,
        error: str,
        error_description: str | None = None,
        status: int = 0,
    ):
        super().__init__(message)
        self.error = error
        self.error_description = error_description
        self.status = status


class TransportError(OAuth2Error):
    """Raised for non-2xx responses without an OAuth2 error body.

    ``status`` is ``None`` when the request never produced a response.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class InvalidTokenResponseError(OAuth2Error):
    """Raised when a successful token response has no access token."""

    pass


class DiscoveryError(OAuth2Error):
    """Raised internally when server metadata discovery fails.

    Never escapes the protocol client: discovery falls back to
    convention-based endpoints.
    """

    pass


class FatalAuthError(OAuth2Error):
    """Raised when neither a refresh nor a new token could be obtained."""

    pass
