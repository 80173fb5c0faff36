"""PKCE (Proof Key for Code Exchange) and CSRF token helpers.

RFC 7636 defines PKCE to bind an authorization code to the client that asked
for it.  The flow relies on a *code verifier* (random high-entropy string)
generated at login time and a *code challenge* derived from that verifier
that is sent to the authorization endpoint.

Only the S256 transformation is implemented; the identity provider requires
it.

This module intentionally performs **no logging** of verifiers or challenges.
"""

from __future__ import annotations

import base64
import secrets
import uuid
from hashlib import sha256
from typing import Final

from captive_portal.oauth.models import PKCEPair

# 64 bytes (512 bits) encode to 86 characters.
_VERIFIER_BYTES: Final[int] = 64
# RFC-7636 §4.1 keeps the verifier between 43 and 128 characters.
_MIN_BYTES: Final[int] = 32
_MAX_BYTES: Final[int] = 96


def _b64url(data: bytes) -> str:
    """Base64-URL encode *without* padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier(num_bytes: int = _VERIFIER_BYTES) -> str:
    """Generate a high-entropy code verifier.

    Parameters
    ----------
    num_bytes:
        Random bytes drawn from :pymod:`secrets` before encoding (default 64).
        Must be 32-96 so the encoded verifier is 43-128 characters.

    Returns
    -------
    str
        URL-safe, unpadded base64 string (``[A-Za-z0-9_-]`` only).
    """
    if not _MIN_BYTES <= num_bytes <= _MAX_BYTES:
        raise ValueError("code verifier must be built from 32-96 random bytes")
    return _b64url(secrets.token_bytes(num_bytes))


def code_challenge_s256(verifier: str) -> str:
    """Compute the *S256* PKCE code challenge for a given verifier.

    Parameters
    ----------
    verifier:
        The code verifier string.

    Returns
    -------
    str
        Base64url-encoded SHA-256 hash without padding.
    """
    return _b64url(sha256(verifier.encode("utf-8")).digest())


def generate_csrf_token() -> str:
    """Return a UUID4 string used as the OAuth ``state`` value."""
    return str(uuid.uuid4())


def new_pkce_pair() -> PKCEPair:
    """Return a fresh verifier together with its S256 challenge."""
    verifier = generate_code_verifier()
    return PKCEPair(verifier=verifier, challenge=code_challenge_s256(verifier))
