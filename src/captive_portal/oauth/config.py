"""Configuration for the identity-provider client.

Environment variables are read **once** by :meth:`OAuthConfig.from_env` and
the resulting immutable object is handed to every component, so nothing in
:mod:`captive_portal.oauth` consults ``os.environ`` on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final

from captive_portal.oauth.authorize import DEFAULT_SCOPE
from captive_portal.oauth.models import DEFAULT_FLOW_TTL
from captive_portal.utils.environment import (
    env_float,
    env_int,
    env_str,
    secure_cookies_enabled,
)
from captive_portal.utils.logging import mask_sensitive

_LOG = logging.getLogger("captive-portal.oauth.config")

_PROVIDER_BASE: Final[str] = "https://api.berlinhouse.com/o"
DEFAULT_AUTHORIZE_URL: Final[str] = f"{_PROVIDER_BASE}/authorize/"
DEFAULT_TOKEN_URL: Final[str] = f"{_PROVIDER_BASE}/token/"
DEFAULT_REVOKE_URL: Final[str] = f"{_PROVIDER_BASE}/revoke_token/"
DEFAULT_USERINFO_URL: Final[str] = f"{_PROVIDER_BASE}/userinfo/"
DEFAULT_HTTP_TIMEOUT: Final[float] = 10.0


@dataclass(frozen=True)
class OAuthConfig:
    """Client credentials, provider endpoints and flow tunables."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    authorize_url: str = DEFAULT_AUTHORIZE_URL
    token_url: str = DEFAULT_TOKEN_URL
    revoke_url: str = DEFAULT_REVOKE_URL
    userinfo_url: str = DEFAULT_USERINFO_URL
    scope: str = DEFAULT_SCOPE
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    state_ttl_seconds: int = DEFAULT_FLOW_TTL
    state_dir: str | None = None
    secure_cookies: bool = False

    def __post_init__(self) -> None:
        if self.http_timeout <= 0:
            raise ValueError("http_timeout must be positive")
        if self.state_ttl_seconds <= 0:
            raise ValueError("state_ttl_seconds must be positive")

    @classmethod
    def from_env(cls) -> "OAuthConfig":
        """Create configuration from ``FT_OAUTH_*`` / ``PORTAL_*`` variables."""
        config = cls(
            client_id=env_str("FT_OAUTH_CLIENT_ID"),
            client_secret=env_str("FT_OAUTH_CLIENT_SECRET"),
            redirect_uri=env_str("FT_OAUTH_REDIRECT_URI"),
            authorize_url=env_str("FT_OAUTH_AUTHORIZE_URL", DEFAULT_AUTHORIZE_URL),
            token_url=env_str("FT_OAUTH_TOKEN_URL", DEFAULT_TOKEN_URL),
            revoke_url=env_str("FT_OAUTH_REVOKE_URL", DEFAULT_REVOKE_URL),
            userinfo_url=env_str("FT_OAUTH_USERINFO_URL", DEFAULT_USERINFO_URL),
            scope=env_str("FT_OAUTH_SCOPE", DEFAULT_SCOPE),
            http_timeout=env_float("FT_OAUTH_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            state_ttl_seconds=env_int("FT_OAUTH_STATE_TTL", DEFAULT_FLOW_TTL),
            state_dir=env_str("PORTAL_STATE_DIR") or None,
            secure_cookies=secure_cookies_enabled(),
        )
        if config.is_configured():
            _LOG.info(
                "OAuth client configured client_id=%s redirect_uri=%s",
                mask_sensitive(config.client_id, 4),
                config.redirect_uri,
            )
        else:
            _LOG.warning(
                "OAuth client not fully configured; member login will be unavailable."
            )
        return config

    def can_start_login(self) -> bool:
        return bool(self.client_id and self.redirect_uri and self.authorize_url)

    def is_configured(self) -> bool:
        """Return True when the full code flow (incl. token exchange) can run."""
        return bool(self.client_id and self.client_secret and self.redirect_uri)
