"""PortalAuthService – member login orchestration.

This service encapsulates the *business logic* of the browser-based login.
Handlers in :mod:`captive_portal.servers.auth` call the thin façade methods
below and translate :class:`~captive_portal.oauth.errors.OAuthFlowError`
into redirects.

Every collaborator (config, state store, token/user-info clients, session
binder, clock) is injected, so a service instance can be built per test.
**No secrets** (verifiers, codes, tokens, client secret) are logged.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import weakref
from dataclasses import dataclass, replace

import httpx

from captive_portal.oauth.authorize import build_login_url
from captive_portal.oauth.clock import Clock, default_clock
from captive_portal.oauth.config import OAuthConfig
from captive_portal.oauth.errors import (
    InvalidOrExpiredStateError,
    NetworkError,
    OAuthFlowError,
    OAuthNotConfiguredError,
    SessionBindingError,
)
from captive_portal.oauth.log_utils import get_flow_logger
from captive_portal.oauth.models import UserIdentity
from captive_portal.oauth.pkce import generate_csrf_token, new_pkce_pair
from captive_portal.oauth.session import (
    InMemorySessionRegistry,
    SessionBinder,
    SessionHandle,
    SessionRegistry,
)
from captive_portal.oauth.store import DiskStateStore, InMemoryStateStore, StateStore
from captive_portal.oauth.tokens import TokenExchanger
from captive_portal.oauth.userinfo import UserInfoFetcher

_LOG = logging.getLogger("captive-portal.oauth.service")


@dataclass(frozen=True, slots=True)
class LoginStart:
    """Result of :meth:`PortalAuthService.start_login`."""

    login_url: str
    csrf_token: str


# --------------------------------------------------------------------------- #
# Public service                                                              #
# --------------------------------------------------------------------------- #
class PortalAuthService:
    """Application service orchestrating the OAuth2 PKCE member login."""

    def __init__(
        self,
        config: OAuthConfig,
        *,
        state_store: StateStore,
        token_exchanger: TokenExchanger,
        user_info_fetcher: UserInfoFetcher,
        session_binder: SessionBinder,
        clock: Clock = default_clock,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.state_store = state_store
        self.tokens = token_exchanger
        self.user_info = user_info_fetcher
        self.sessions = session_binder
        self._clock = clock
        # Shared client created by build_auth_service; closed in aclose()
        self._http_client = http_client
        # One refresh at a time per session; entries vanish once unused
        self._refresh_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------ #
    # Login                                                              #
    # ------------------------------------------------------------------ #
    def start_login(
        self,
        *,
        session_id: str | None = None,
        redirect_uri: str | None = None,
        correlation_id: str | None = None,
    ) -> LoginStart:
        """Create a fresh login attempt and return the provider authorize URL."""
        if not self.config.can_start_login():
            raise OAuthNotConfiguredError()

        redirect_uri = redirect_uri or self.config.redirect_uri
        pkce = new_pkce_pair()
        csrf_token = generate_csrf_token()
        self.state_store.put(csrf_token, pkce.verifier, redirect_uri, session_id=session_id)

        login_url = build_login_url(
            self.config.authorize_url,
            self.config.client_id,
            redirect_uri,
            csrf_token,
            pkce.challenge,
            scope=self.config.scope,
        )
        log = get_flow_logger(csrf_token=csrf_token, correlation_id=correlation_id)
        log.debug("Login attempt started")
        return LoginStart(login_url=login_url, csrf_token=csrf_token)

    async def complete_login(
        self,
        code: str,
        state: str,
        *,
        session_id: str | None = None,
        correlation_id: str | None = None,
    ) -> SessionHandle:
        """Handle the provider callback and bind a session.

        The flow state is consumed first, so a failure in any later step
        still invalidates this ``state``; the user restarts from a fresh URL.
        """
        log = get_flow_logger(csrf_token=state, correlation_id=correlation_id)

        flow = self.state_store.consume(state)
        if flow is None:
            log.warning("Callback with unknown, expired or replayed state")
            raise InvalidOrExpiredStateError()
        if flow.session_id is not None and flow.session_id != session_id:
            log.warning("Callback from a different browser session than the login")
            raise InvalidOrExpiredStateError(
                "Login attempt belongs to another session.", reason="session_mismatch"
            )

        if not self.config.is_configured():
            raise OAuthNotConfiguredError()

        tokens = await self.tokens.exchange_code(
            code, flow.code_verifier, redirect_uri=flow.redirect_uri
        )
        identity = await self.user_info.fetch_user_info(tokens.access_token, tokens.token_type)
        log = get_flow_logger(
            csrf_token=state, user_id=identity.id, correlation_id=correlation_id
        )

        try:
            handle = self.sessions.on_authenticated(identity, tokens)
            if inspect.isawaitable(handle):
                handle = await handle
        except OAuthFlowError:
            raise
        except Exception as exc:
            log.error("Session binding failed: %s", exc)
            raise SessionBindingError(reason=type(exc).__name__) from exc

        log.info("Member authenticated")
        return handle

    # ------------------------------------------------------------------ #
    # Signed-in member                                                   #
    # ------------------------------------------------------------------ #
    async def current_member(self, session_id: str) -> UserIdentity | None:
        """Return the member bound to *session_id*, refreshing expired tokens.

        A refresh the provider rejects ends the session (``None``); a network
        failure propagates and keeps the session for a later attempt.
        Concurrent callers for one session share a single refresh.
        """
        registry = self._registry()
        member = registry.get(session_id)
        if member is None:
            return None
        if not member.tokens.is_expired(clock=self._clock):
            return member.identity

        async with self._refresh_lock(session_id):
            return await self._refresh_member(registry, session_id)

    async def _refresh_member(
        self, registry: SessionRegistry, session_id: str
    ) -> UserIdentity | None:
        # Re-read under the lock: another caller may have refreshed already
        member = registry.get(session_id)
        if member is None:
            return None
        if not member.tokens.is_expired(clock=self._clock):
            return member.identity

        if not member.tokens.refresh_token or not self.config.is_configured():
            registry.delete(session_id)
            return None

        try:
            refreshed = await self.tokens.refresh(member.tokens.refresh_token)
            if not refreshed.refresh_token:
                refreshed = replace(refreshed, refresh_token=member.tokens.refresh_token)
            identity = await self.user_info.fetch_user_info(
                refreshed.access_token, refreshed.token_type
            )
        except NetworkError:
            raise
        except OAuthFlowError as exc:
            _LOG.info("Token refresh failed for user id=%s: %s", member.identity.id, exc)
            registry.delete(session_id)
            return None

        if registry.update(session_id, tokens=refreshed, identity=identity) is None:
            _LOG.info("Session ended during token refresh for user id=%s", identity.id)
            return None
        return identity

    async def logout(self, session_id: str) -> bool:
        """Revoke the member's access token and drop the session.

        Returns whether the provider acknowledged the revocation.
        """
        registry = self._registry()
        member = registry.get(session_id)
        revoked = False
        if member is not None and self.config.is_configured():
            try:
                revoked = await self.tokens.revoke(member.tokens.access_token)
            except NetworkError as exc:
                _LOG.warning("Token revocation failed, continuing logout: %s", exc)
        registry.delete(session_id)
        return revoked

    async def aclose(self) -> None:
        """Release HTTP resources held by the service and its clients."""
        if self._http_client is not None:
            await self._http_client.aclose()
        else:
            await self.tokens.aclose()
            await self.user_info.aclose()

    # ---------------- internal helpers --------------------------------- #
    def _refresh_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._refresh_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[session_id] = lock
        return lock

    def _registry(self) -> SessionRegistry:
        if not isinstance(self.sessions, SessionRegistry):
            raise TypeError("session binder does not support session lookups")
        return self.sessions


def build_state_store(config: OAuthConfig, *, clock: Clock = default_clock) -> StateStore:
    """Disk-backed store when ``state_dir`` is configured, in-memory otherwise."""
    if config.state_dir:
        return DiskStateStore(config.state_dir, ttl_seconds=config.state_ttl_seconds, clock=clock)
    return InMemoryStateStore(ttl_seconds=config.state_ttl_seconds, clock=clock)


def build_auth_service(
    config: OAuthConfig,
    *,
    session_binder: SessionBinder | None = None,
    state_store: StateStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    clock: Clock = default_clock,
) -> PortalAuthService:
    """Wire a :class:`PortalAuthService` sharing one ``httpx.AsyncClient``."""
    owned = http_client is None
    client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(config.http_timeout))
    return PortalAuthService(
        config,
        state_store=state_store or build_state_store(config, clock=clock),
        token_exchanger=TokenExchanger(config, http_client=client, clock=clock),
        user_info_fetcher=UserInfoFetcher(config, http_client=client),
        session_binder=session_binder or InMemorySessionRegistry(clock=clock),
        clock=clock,
        http_client=client if owned else None,
    )
