"""Exception types raised by the member-login flow.

Only lightweight, **data-carrying** exceptions live here so that the HTTP
layer can turn them into redirects or JSON bodies.  Each class declares:

``error_code``
    Stable, URL-safe identifier used in ``/?error=<code>`` redirects.
``restart_login``
    ``True`` when the user should simply start a fresh login attempt,
    ``False`` when the failure points at configuration or the server itself.
"""

from __future__ import annotations


class OAuthFlowError(RuntimeError):
    """Base class for every failure of a login attempt."""

    error_code: str = "callback_failed"
    restart_login: bool = True
    default_message: str = "Login failed."

    def __init__(self, message: str | None = None, *, reason: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.reason: str | None = reason

    def to_payload(self) -> dict[str, str | bool]:
        """Return a JSON-serialisable payload **without secrets**."""
        payload: dict[str, str | bool] = {
            "error": self.error_code,
            "message": str(self),
            "restart_login": self.restart_login,
        }
        if self.reason:
            payload["reason"] = self.reason
        return payload


class InvalidOrExpiredStateError(OAuthFlowError):
    """The callback ``state`` is unknown, expired or was already used."""

    error_code = "invalid_session"
    default_message = "Login attempt is unknown or has expired."


class TokenExchangeError(OAuthFlowError):
    """The provider rejected a code exchange or refresh."""

    error_code = "token_exchange_failed"
    default_message = "Token endpoint rejected the request."


class NetworkError(OAuthFlowError):
    """Transport failure or timeout while talking to the provider."""

    error_code = "network_error"
    default_message = "Identity provider is unreachable."


class UserInfoFetchError(OAuthFlowError):
    """The user-info endpoint failed or returned an unusable body."""

    error_code = "userinfo_failed"
    default_message = "Could not resolve the signed-in user."


class SessionBindingError(OAuthFlowError):
    """The session collaborator could not bind the authenticated user."""

    error_code = "session_binding_failed"
    restart_login = False
    default_message = "Could not create a session."


class OAuthNotConfiguredError(OAuthFlowError):
    """Client credentials or redirect URI are missing."""

    error_code = "oauth_not_configured"
    restart_login = False
    default_message = (
        "OAuth not configured. Please set FT_OAUTH_CLIENT_ID and FT_OAUTH_REDIRECT_URI"
    )
