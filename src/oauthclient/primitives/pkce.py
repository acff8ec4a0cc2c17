"""PKCE (Proof Key for Code Exchange) primitives.

Implements RFC 7636 code verifier generation and code challenge derivation
to prevent authorization code interception attacks.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from typing import Protocol

from oauthclient.models.errors import UsageError
from oauthclient.models.security import PLAIN, S256, CodeChallenge

logger = logging.getLogger(__name__)

VERIFIER_BYTES = 32


class CryptoBackend(Protocol):
    """Randomness and hashing capability used for PKCE."""

    def random_bytes(self, n: int) -> bytes:
        """Return ``n`` cryptographically strong random bytes."""
        ...

    def sha256(self, data: bytes) -> bytes | None:
        """Return the SHA-256 digest of ``data``, or None if unavailable."""
        ...


class StdlibCryptoBackend:
    """Crypto backend built on ``secrets`` and ``hashlib``.

    SHA-256 availability is probed once; interpreters built without it
    (some restricted FIPS builds) fall back to the ``plain`` method.
    """

    def __init__(self) -> None:
        self.has_sha256 = "sha256" in hashlib.algorithms_available

    def random_bytes(self, n: int) -> bytes:
        return secrets.token_bytes(n)

    def sha256(self, data: bytes) -> bytes | None:
        if not self.has_sha256:
            return None
        return hashlib.sha256(data).digest()


default_backend: CryptoBackend = StdlibCryptoBackend()


def base64url(data: bytes) -> str:
    """Base64url-encode without padding (RFC 7636 Appendix A)."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier(backend: CryptoBackend | None = None) -> str:
    """Generate a cryptographically secure code verifier.

    32 random bytes, base64url-encoded, give a 43-character verifier made of
    unreserved characters only (RFC 7636 Section 4.1).

    Args:
        backend: Crypto backend, defaults to the module-wide backend

    Returns:
        The code verifier
    """
    backend = backend or default_backend
    return base64url(backend.random_bytes(VERIFIER_BYTES))


def get_code_challenge(
    code_verifier: str, backend: CryptoBackend | None = None
) -> CodeChallenge:
    """Derive the code challenge for a code verifier.

    RFC 7636 Section 4.2: for S256 the challenge is
    BASE64URL-ENCODE(SHA256(ASCII(code_verifier))). Without a SHA-256
    digest the verifier is sent as-is with the ``plain`` method.

    Args:
        code_verifier: The code verifier to derive the challenge from
        backend: Crypto backend, defaults to the module-wide backend

    Returns:
        The code challenge and its method

    Raises:
        UsageError: If the verifier is not ASCII
    """
    backend = backend or default_backend

    try:
        verifier_bytes = code_verifier.encode("ascii")
    except UnicodeEncodeError as e:
        raise UsageError("code_verifier must only contain ASCII characters") from e

    digest = backend.sha256(verifier_bytes)
    if digest is None:
        logger.warning(
            "SHA-256 is not available, falling back to the 'plain' PKCE method. "
            "The code verifier will be sent unhashed."
        )
        return CodeChallenge(method=PLAIN, challenge=code_verifier)

    return CodeChallenge(method=S256, challenge=base64url(digest))
