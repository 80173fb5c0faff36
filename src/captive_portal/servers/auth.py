"""Browser-facing member login endpoints.

Handlers are intentionally thin:

1. Parse and validate HTTP-layer parameters and the ``ft_session`` cookie.
2. Delegate business logic to :class:`~captive_portal.oauth.service.PortalAuthService`.
3. Return an appropriate Starlette ``Response`` type.

The base path is configurable (default: ``/api/auth``) so that reverse-proxies
can mount the portal under arbitrary prefixes.

SECURITY NOTE
-------------
• No raw secrets (state, code verifiers, codes, access / refresh tokens,
  client secrets) are ever logged.
• Correlation IDs, if present in ``request.state.correlation_id``, are included
  in INFO logs to aid troubleshooting.
"""

from __future__ import annotations

import logging
import secrets
from typing import Final
from urllib.parse import urlencode

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from captive_portal.oauth.errors import NetworkError, OAuthFlowError
from captive_portal.oauth.service import PortalAuthService
from captive_portal.oauth.session import DEFAULT_SESSION_TTL
from captive_portal.utils.logging import mask_sensitive

_LOG = logging.getLogger("captive-portal.auth.routes")

SESSION_COOKIE: Final[str] = "ft_session"


def _correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


def _home_redirect(**params: str) -> RedirectResponse:
    """Redirect back to the portal home page with a status query string."""
    return RedirectResponse(f"/?{urlencode(params)}", status_code=302)


def _set_session_cookie(response: Response, session_id: str, *, secure: bool) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session_id,
        max_age=DEFAULT_SESSION_TTL,
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
    )


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def auth_routes(svc: PortalAuthService, *, base_path: str = "/api/auth") -> list[Route]:
    """Return the login endpoints bound to *svc* under *base_path*."""
    secure_cookies = svc.config.secure_cookies

    # ----- GET /api/auth/login ------------------------------------------- #
    async def _login(request: Request) -> Response:
        session_id = request.cookies.get(SESSION_COOKIE)
        new_cookie = session_id is None
        if new_cookie:
            session_id = secrets.token_hex(16)

        try:
            start = svc.start_login(
                session_id=session_id, correlation_id=_correlation_id(request)
            )
        except OAuthFlowError as exc:
            _LOG.error("Cannot start login: %s", exc)
            return JSONResponse({"success": False, "message": str(exc)}, status_code=500)

        _LOG.info(
            "Login started flow=%s correlation_id=%s",
            mask_sensitive(start.csrf_token, 6),
            _correlation_id(request),
        )

        # ------------------------------------------------------------------
        # Content negotiation + explicit override for browser vs API clients
        # ------------------------------------------------------------------
        fmt_param = request.query_params.get("format")
        accept_header = (request.headers.get("accept") or "").lower()

        response: Response
        if fmt_param == "redirect" or (fmt_param != "json" and "text/html" in accept_header):
            # 303 See Other for GET safety across methods
            response = RedirectResponse(start.login_url, status_code=303)
        else:
            response = JSONResponse({"success": True, "loginUrl": start.login_url})

        if new_cookie:
            _set_session_cookie(response, session_id, secure=secure_cookies)
        return response

    # ----- GET /api/auth/callback ---------------------------------------- #
    async def _callback(request: Request) -> Response:
        # Check for provider-side errors first (e.g., access_denied)
        oauth_error = request.query_params.get("error")
        if oauth_error:
            _LOG.warning(
                "Provider returned error=%s correlation_id=%s",
                oauth_error,
                _correlation_id(request),
            )
            return _home_redirect(error=oauth_error)

        code = request.query_params.get("code")
        state = request.query_params.get("state")
        if not code or not state:
            _LOG.error("OAuth callback: Missing code or state parameter")
            return _home_redirect(error="missing_params")

        session_id = request.cookies.get(SESSION_COOKIE)
        if not session_id:
            _LOG.error("OAuth callback: No %s cookie found", SESSION_COOKIE)
            return _home_redirect(error="no_session")

        try:
            handle = await svc.complete_login(
                code, state, session_id=session_id, correlation_id=_correlation_id(request)
            )
        except OAuthFlowError as exc:
            _LOG.warning(
                "OAuth callback failed error=%s correlation_id=%s: %s",
                exc.error_code,
                _correlation_id(request),
                exc,
            )
            return _home_redirect(error=exc.error_code)

        _LOG.info(
            "OAuth success user_id=%s correlation_id=%s",
            handle.user_id,
            _correlation_id(request),
        )
        response = _home_redirect(login="success")
        _set_session_cookie(response, handle.session_id, secure=secure_cookies)
        return response

    # ----- GET /api/auth/me ---------------------------------------------- #
    async def _me(request: Request) -> Response:
        session_id = request.cookies.get(SESSION_COOKIE)
        if not session_id:
            return JSONResponse({"authenticated": False})

        try:
            identity = await svc.current_member(session_id)
        except NetworkError as exc:
            _LOG.warning("Member lookup failed: %s", exc)
            return JSONResponse({"success": False, "message": str(exc)}, status_code=502)

        if identity is None:
            return JSONResponse({"authenticated": False})
        return JSONResponse({"authenticated": True, "user": identity.to_dict()})

    # ----- POST /api/auth/logout ----------------------------------------- #
    async def _logout(request: Request) -> Response:
        session_id = request.cookies.get(SESSION_COOKIE)
        if session_id:
            revoked = await svc.logout(session_id)
            _LOG.info(
                "Logout revoked=%s correlation_id=%s", revoked, _correlation_id(request)
            )
        response = JSONResponse({"success": True})
        response.delete_cookie(SESSION_COOKIE, path="/")
        return response

    return [
        Route(f"{base_path}/login", _login, methods=["GET"]),
        Route(f"{base_path}/callback", _callback, methods=["GET"]),
        Route(f"{base_path}/me", _me, methods=["GET"]),
        Route(f"{base_path}/logout", _logout, methods=["POST"]),
    ]
