"""HTTP surface of the captive portal's member login."""

from .main import create_app

__all__ = ["create_app"]
