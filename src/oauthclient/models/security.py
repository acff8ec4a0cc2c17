"""Security-related models for OAuth2 authentication.

Contains the PKCE code challenge sent with authorization requests.
"""

from __future__ import annotations

from dataclasses import dataclass

S256 = "S256"
PLAIN = "plain"


@dataclass(frozen=True)
class CodeChallenge:
    """PKCE code challenge derived from a code verifier (RFC 7636).

    ``plain`` is only produced when no SHA-256 digest is available.
    """

    method: str
    challenge: str

    def __post_init__(self) -> None:
        if self.method not in (S256, PLAIN):
            raise ValueError(f"Unsupported code challenge method: {self.method}")
        if not self.challenge:
            raise ValueError("code_challenge cannot be empty")
