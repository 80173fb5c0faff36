"""Captive portal member login (OAuth 2.0 Authorization Code + PKCE)."""

__version__ = "0.1.0"
