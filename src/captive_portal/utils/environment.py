"""Utility functions for reading the portal's environment variables."""

import logging
import os
from typing import Final, Tuple

logger = logging.getLogger("captive-portal.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")
_FALSY: Final[Tuple[str, ...]] = ("false", "0", "no", "n", "off")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def env_str(name: str, default: str = "") -> str:
    """Return ``$name`` stripped, or *default* when unset or blank."""
    value = (os.getenv(name) or "").strip()
    return value or default


def env_float(name: str, default: float) -> float:
    """Return ``$name`` as float; invalid values fall back to *default*."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def env_int(name: str, default: int) -> int:
    return int(env_float(name, float(default)))


def is_production() -> bool:
    """Return True when ``PORTAL_ENV`` names a production deployment."""
    return env_str("PORTAL_ENV").lower() in ("production", "prod")


def secure_cookies_enabled() -> bool:
    """
    Determine whether session cookies carry the ``Secure`` attribute.

    Precedence (highest → lowest):
      1. ``PORTAL_SECURE_COOKIES`` when explicitly set
      2. ``PORTAL_ENV=production``
    """
    raw = os.getenv("PORTAL_SECURE_COOKIES")
    if raw is not None and raw.strip().lower() in _TRUTHY + _FALSY:
        return _truthy(raw)
    return is_production()
