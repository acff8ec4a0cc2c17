"""Token and grant request models for OAuth2.

Contains the immutable token value handed to callers, the token endpoint
response model, and one fixed-schema request builder per grant type.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

from oauthclient.models.errors import InvalidTokenResponseError, UsageError

FormData = dict[str, str | list[str]]


@dataclass(frozen=True)
class Token:
    """An OAuth2 token as held by the lifecycle manager.

    Replaced wholesale on refresh, never mutated.
    """

    access_token: str
    expires_at: float | None = None  # Unix timestamp, None never expires
    refresh_token: str | None = None

    def is_expired(self, now: float | None = None) -> bool:
        """Check if the token is past its expiry time.

        Args:
            now: Unix timestamp to compare against, defaults to the current time
        """
        if self.expires_at is None:
            return False

        if now is None:
            now = time.time()

        return self.expires_at <= now

    def can_refresh(self) -> bool:
        """Check if token can be refreshed."""
        return bool(self.refresh_token)


class TokenResponse(BaseModel):
    """OAuth2 token endpoint response (RFC 6749 Section 5.1)."""

    model_config = ConfigDict(extra="allow")

    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None  # Seconds until expiry
    refresh_token: str | None = None
    scope: str | None = None

    def calculate_expires_at(self) -> float | None:
        """Calculate absolute expiry timestamp from expires_in.

        Returns:
            Unix timestamp when token expires, or None if no expiry
        """
        if self.expires_in is None:
            return None
        return time.time() + self.expires_in

    def to_token(self) -> Token:
        """Convert the response to a Token.

        Raises:
            InvalidTokenResponseError: If the response has no access token
        """
        if not self.access_token:
            raise InvalidTokenResponseError(
                "Token response missing required access_token"
            )

        return Token(
            access_token=self.access_token,
            expires_at=self.calculate_expires_at(),
            refresh_token=self.refresh_token,
        )


def _join_scope(scope: Iterable[str] | None) -> str | None:
    if scope is None:
        return None
    return " ".join(scope)


def _check_reserved(
    extra_params: Mapping[str, str] | None, reserved: frozenset[str]
) -> None:
    """Reject extra parameters that would overwrite a standard field."""
    if not extra_params:
        return

    collisions = sorted(reserved.intersection(extra_params))
    if collisions:
        raise UsageError(
            f"The following extra_params are disallowed: '{', '.join(collisions)}'. "
            f"Reserved names: '{', '.join(sorted(reserved))}'"
        )


def _form(
    fields: Mapping[str, str | list[str] | None],
    extra: Mapping[str, str] | None,
) -> FormData:
    data: FormData = {k: v for k, v in fields.items() if v is not None}
    if extra:
        data.update(extra)
    return data


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh token grant parameters (RFC 6749 Section 6)."""

    refresh_token: str
    scope: list[str] | None = None
    resource: str | list[str] | None = None  # RFC 8707

    def to_form_data(self) -> FormData:
        """Convert to form data for an application/x-www-form-urlencoded body."""
        return _form(
            {
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
                "scope": _join_scope(self.scope),
                "resource": self.resource,
            },
            None,
        )


@dataclass(frozen=True)
class ClientCredentialsRequest:
    """Client credentials grant parameters (RFC 6749 Section 4.4)."""

    RESERVED = frozenset({"client_id", "client_secret", "grant_type", "scope"})

    scope: list[str] | None = None
    resource: str | list[str] | None = None
    extra_params: dict[str, str] | None = field(default=None)

    def __post_init__(self) -> None:
        _check_reserved(self.extra_params, self.RESERVED)

    def to_form_data(self) -> FormData:
        """Convert to form data for an application/x-www-form-urlencoded body."""
        return _form(
            {
                "grant_type": "client_credentials",
                "scope": _join_scope(self.scope),
                "resource": self.resource,
            },
            self.extra_params,
        )


@dataclass(frozen=True)
class PasswordRequest:
    """Resource owner password credentials grant (RFC 6749 Section 4.3)."""

    RESERVED = frozenset(
        {
            "client_id",
            "client_secret",
            "grant_type",
            "username",
            "password",
            "scope",
            "resource",
        }
    )

    username: str
    password: str
    scope: list[str] | None = None
    resource: str | list[str] | None = None
    extra_params: dict[str, str] | None = field(default=None)

    def __post_init__(self) -> None:
        _check_reserved(self.extra_params, self.RESERVED)

    def to_form_data(self) -> FormData:
        """Convert to form data for an application/x-www-form-urlencoded body."""
        return _form(
            {
                "grant_type": "password",
                "username": self.username,
                "password": self.password,
                "scope": _join_scope(self.scope),
                "resource": self.resource,
            },
            self.extra_params,
        )


@dataclass(frozen=True)
class AuthorizationCodeRequest:
    """Authorization code grant parameters (RFC 6749 Section 4.1.3).

    Carries the PKCE code_verifier (RFC 7636) when the authorization request
    used a code challenge.
    """

    RESERVED = frozenset(
        {"code", "redirect_uri", "resource", "state", "grant_type", "code_verifier"}
    )

    code: str
    redirect_uri: str
    code_verifier: str | None = None
    resource: str | list[str] | None = None
    extra_params: dict[str, str] | None = field(default=None)

    def __post_init__(self) -> None:
        self.check_extra_params(self.extra_params)

    @classmethod
    def check_extra_params(cls, extra_params: Mapping[str, str] | None) -> None:
        """Raise UsageError if extra_params use reserved names."""
        _check_reserved(extra_params, cls.RESERVED)

    def to_form_data(self) -> FormData:
        """Convert to form data for an application/x-www-form-urlencoded body."""
        return _form(
            {
                "grant_type": "authorization_code",
                "code": self.code,
                "redirect_uri": self.redirect_uri,
                "code_verifier": self.code_verifier,
                "resource": self.resource,
            },
            self.extra_params,
        )
