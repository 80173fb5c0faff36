"""Authorization URL construction for the browser redirect step."""

from __future__ import annotations

from typing import Final
from urllib.parse import urlencode

DEFAULT_SCOPE: Final[str] = "read write openid"


def build_login_url(
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    csrf_token: str,
    code_challenge: str,
    *,
    scope: str = DEFAULT_SCOPE,
) -> str:
    """Return the provider authorize URL (with PKCE & state).

    Every parameter is always present; values are encoded with
    :func:`urllib.parse.urlencode` so ``scope`` renders as
    ``read+write+openid`` and the redirect URI is percent-encoded.
    """
    query_params: dict[str, str] = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": scope,
        "state": csrf_token,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    missing = sorted(k for k, v in query_params.items() if not v)
    if not authorize_url or missing:
        raise ValueError(f"cannot build login URL, missing: {missing or ['authorize_url']}")

    separator = "&" if "?" in authorize_url else "?"
    return f"{authorize_url}{separator}{urlencode(query_params)}"
