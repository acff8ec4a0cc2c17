"""Authorization flow models for OAuth2.

Contains models for authorization requests and redirect handling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlencode

from oauthclient.models.errors import UsageError
from oauthclient.models.security import CodeChallenge


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters (RFC 6749 Section 4.1.1)."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    code_challenge: CodeChallenge | None = None  # RFC 7636
    state: str | None = None
    scope: list[str] | None = None
    resource: list[str] = field(default_factory=list)  # RFC 8707
    extra_params: dict[str, str] | None = None

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL.

        Raises:
            UsageError: If an extra parameter would overwrite a standard one
        """
        params: list[tuple[str, str]] = [
            ("client_id", self.client_id),
            ("response_type", "code"),
            ("redirect_uri", self.redirect_uri),
        ]

        if self.code_challenge:
            params.append(("code_challenge_method", self.code_challenge.method))
            params.append(("code_challenge", self.code_challenge.challenge))
        if self.state:
            params.append(("state", self.state))
        if self.scope:
            params.append(("scope", " ".join(self.scope)))
        for resource in self.resource:
            params.append(("resource", resource))

        if self.extra_params:
            present = {key for key, _ in params}
            for key, value in self.extra_params.items():
                if key in present:
                    raise UsageError(
                        "Property in extra_params would overwrite standard "
                        f"property: {key}"
                    )
                params.append((key, value))

        return f"{self.authorization_endpoint}?{urlencode(params)}"


@dataclass(frozen=True)
class RedirectResult:
    """Validated result of an authorization redirect."""

    code: str
    scope: list[str] | None = None
