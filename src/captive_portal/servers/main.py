"""Starlette application for the portal's member login."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from captive_portal.oauth.config import OAuthConfig
from captive_portal.oauth.service import PortalAuthService, build_auth_service

from .auth import auth_routes
from .correlation import CorrelationIdMiddleware

logger = logging.getLogger("captive-portal.server.main")

STATE_PURGE_INTERVAL = 60.0


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


async def _purge_expired_flows(service: PortalAuthService, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            removed = service.state_store.cleanup_expired()
        except OSError as e:
            logger.warning(f"Login state cleanup failed: {e}")
            continue
        if removed:
            logger.debug(f"Purged {removed} expired login attempts")


def create_app(
    config: OAuthConfig | None = None,
    *,
    service: PortalAuthService | None = None,
    base_path: str = "/api/auth",
    purge_interval: float = STATE_PURGE_INTERVAL,
) -> Starlette:
    """Build the ASGI app; *service* defaults to one wired from *config*."""
    if service is None:
        service = build_auth_service(config or OAuthConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Captive portal auth server lifespan starting...")
        purge_task = asyncio.create_task(_purge_expired_flows(service, purge_interval))
        try:
            yield
        finally:
            purge_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await purge_task
            await service.aclose()
            logger.info("Captive portal auth server lifespan shut down")

    routes = [
        Route("/healthz", health_check, methods=["GET"], include_in_schema=False),
        *auth_routes(service, base_path=base_path),
    ]
    app = Starlette(
        routes=routes,
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
    app.state.auth_service = service
    return app
