"""Tests for PortalAuthService orchestration.

The identity provider is stubbed with ``httpx.MockTransport`` so every test
exercises the real token and user-info clients.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qs, urlparse

import anyio
import httpx
import pytest

from captive_portal.oauth.clock import FixedClock
from captive_portal.oauth.config import OAuthConfig
from captive_portal.oauth.errors import (
    InvalidOrExpiredStateError,
    NetworkError,
    OAuthNotConfiguredError,
    SessionBindingError,
    TokenExchangeError,
)
from captive_portal.oauth.models import TokenSet, UserIdentity
from captive_portal.oauth.pkce import code_challenge_s256
from captive_portal.oauth.service import PortalAuthService, build_auth_service
from captive_portal.oauth.session import InMemorySessionRegistry, SessionHandle
from captive_portal.oauth.store import DiskStateStore, InMemoryStateStore


class CountingBinder:
    """Binder that records every call and issues a fixed handle."""

    def __init__(self) -> None:
        self.calls: list[tuple[UserIdentity, TokenSet]] = []

    def on_authenticated(self, identity: UserIdentity, tokens: TokenSet) -> SessionHandle:
        self.calls.append((identity, tokens))
        return SessionHandle(session_id="bound-1", user_id=identity.id)


class AsyncBinder(CountingBinder):
    async def on_authenticated(self, identity: UserIdentity, tokens: TokenSet) -> SessionHandle:
        return super().on_authenticated(identity, tokens)


class FailingBinder:
    def on_authenticated(self, identity: UserIdentity, tokens: TokenSet) -> SessionHandle:
        raise RuntimeError("session database is down")


def _service(config, provider, clock, binder=None, **kwargs) -> PortalAuthService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider))
    return build_auth_service(
        config, session_binder=binder, http_client=client, clock=clock, **kwargs
    )


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


# --------------------------------------------------------------------------- #
# start_login / complete_login                                                #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_full_login_binds_session_exactly_once(oauth_config, provider, clock) -> None:
    binder = CountingBinder()
    svc = _service(oauth_config, provider, clock, binder)

    start = svc.start_login(session_id="browser-1")
    query = _query(start.login_url)
    assert query["state"] == start.csrf_token
    assert query["client_id"] == "portal-client"
    assert query["code_challenge_method"] == "S256"

    handle = await svc.complete_login("auth-code", start.csrf_token, session_id="browser-1")

    assert handle == SessionHandle(session_id="bound-1", user_id="7")
    assert len(binder.calls) == 1
    identity, tokens = binder.calls[0]
    assert identity.email == "member@example.com"
    assert tokens.access_token == "access-1"

    # The verifier sent to the token endpoint is the one behind the URL challenge
    token_form = provider.form(provider.calls(provider.TOKEN_URL)[0])
    assert token_form["code"] == "auth-code"
    assert code_challenge_s256(token_form["code_verifier"]) == query["code_challenge"]
    assert token_form["redirect_uri"] == oauth_config.redirect_uri

    userinfo = provider.calls(provider.USERINFO_URL)[0]
    assert userinfo.headers["Authorization"] == "Bearer access-1"


@pytest.mark.anyio
async def test_async_binder_is_awaited(oauth_config, provider, clock) -> None:
    binder = AsyncBinder()
    svc = _service(oauth_config, provider, clock, binder)
    start = svc.start_login()

    handle = await svc.complete_login("auth-code", start.csrf_token)

    assert handle.user_id == "7"
    assert len(binder.calls) == 1


def test_each_login_gets_fresh_state_and_challenge(oauth_config, provider, clock) -> None:
    svc = _service(oauth_config, provider, clock)
    first = _query(svc.start_login().login_url)
    second = _query(svc.start_login().login_url)

    assert first["state"] != second["state"]
    assert first["code_challenge"] != second["code_challenge"]


@pytest.mark.anyio
async def test_replayed_state_is_rejected(oauth_config, provider, clock) -> None:
    binder = CountingBinder()
    svc = _service(oauth_config, provider, clock, binder)
    start = svc.start_login()
    await svc.complete_login("auth-code", start.csrf_token)

    with pytest.raises(InvalidOrExpiredStateError):
        await svc.complete_login("auth-code", start.csrf_token)

    assert len(provider.calls(provider.TOKEN_URL)) == 1
    assert len(binder.calls) == 1


@pytest.mark.anyio
async def test_unknown_state_never_reaches_provider(oauth_config, provider, clock) -> None:
    svc = _service(oauth_config, provider, clock)

    with pytest.raises(InvalidOrExpiredStateError) as exc_info:
        await svc.complete_login("auth-code", "forged-state")

    assert exc_info.value.error_code == "invalid_session"
    assert provider.requests == []


@pytest.mark.anyio
async def test_expired_state_is_rejected(oauth_config, provider, clock) -> None:
    svc = _service(oauth_config, provider, clock)
    start = svc.start_login()

    clock.advance(oauth_config.state_ttl_seconds + 1)

    with pytest.raises(InvalidOrExpiredStateError):
        await svc.complete_login("auth-code", start.csrf_token)
    assert provider.requests == []


@pytest.mark.anyio
async def test_state_from_other_browser_session_is_rejected(
    oauth_config, provider, clock
) -> None:
    svc = _service(oauth_config, provider, clock)
    start = svc.start_login(session_id="browser-1")

    with pytest.raises(InvalidOrExpiredStateError) as exc_info:
        await svc.complete_login("auth-code", start.csrf_token, session_id="browser-2")

    assert exc_info.value.reason == "session_mismatch"
    # Consumed either way
    with pytest.raises(InvalidOrExpiredStateError):
        await svc.complete_login("auth-code", start.csrf_token, session_id="browser-1")


@pytest.mark.anyio
async def test_token_failure_consumes_state_and_skips_binder(
    oauth_config, provider, clock
) -> None:
    provider.token_response = httpx.Response(400, json={"error": "invalid_grant"})
    binder = CountingBinder()
    svc = _service(oauth_config, provider, clock, binder)
    start = svc.start_login()

    with pytest.raises(TokenExchangeError):
        await svc.complete_login("stale", start.csrf_token)

    assert binder.calls == []
    assert provider.calls(provider.USERINFO_URL) == []
    with pytest.raises(InvalidOrExpiredStateError):
        await svc.complete_login("stale", start.csrf_token)


@pytest.mark.anyio
async def test_binder_failure_is_wrapped(oauth_config, provider, clock) -> None:
    svc = _service(oauth_config, provider, clock, FailingBinder())
    start = svc.start_login()

    with pytest.raises(SessionBindingError) as exc_info:
        await svc.complete_login("auth-code", start.csrf_token)

    assert exc_info.value.reason == "RuntimeError"
    assert exc_info.value.restart_login is False


def test_start_login_requires_configuration(provider, clock) -> None:
    svc = _service(OAuthConfig(), provider, clock)

    with pytest.raises(OAuthNotConfiguredError):
        svc.start_login()
    assert len(svc.state_store) == 0


@pytest.mark.anyio
async def test_complete_login_requires_client_secret(oauth_config, provider, clock) -> None:
    config = OAuthConfig(
        client_id=oauth_config.client_id,
        redirect_uri=oauth_config.redirect_uri,
        authorize_url=oauth_config.authorize_url,
    )
    svc = _service(config, provider, clock)
    start = svc.start_login()

    with pytest.raises(OAuthNotConfiguredError):
        await svc.complete_login("auth-code", start.csrf_token)
    assert provider.requests == []


def test_state_dir_selects_disk_store(oauth_config, provider, clock, tmp_path) -> None:
    config = OAuthConfig(
        client_id=oauth_config.client_id,
        redirect_uri=oauth_config.redirect_uri,
        state_dir=str(tmp_path),
    )
    assert isinstance(_service(config, provider, clock).state_store, DiskStateStore)
    assert isinstance(_service(oauth_config, provider, clock).state_store, InMemoryStateStore)


# --------------------------------------------------------------------------- #
# current_member / logout                                                     #
# --------------------------------------------------------------------------- #
async def _signed_in(svc: PortalAuthService) -> str:
    start = svc.start_login()
    handle = await svc.complete_login("auth-code", start.csrf_token)
    return handle.session_id


@pytest.mark.anyio
async def test_current_member_with_valid_tokens(oauth_config, provider, clock) -> None:
    svc = _service(oauth_config, provider, clock)
    session_id = await _signed_in(svc)
    before = len(provider.requests)

    identity = await svc.current_member(session_id)

    assert identity is not None and identity.id == "7"
    assert len(provider.requests) == before
    assert await svc.current_member("unknown") is None


@pytest.mark.anyio
async def test_current_member_refreshes_expired_tokens(
    oauth_config, provider, clock: FixedClock
) -> None:
    svc = _service(oauth_config, provider, clock)
    session_id = await _signed_in(svc)
    provider.token_response = httpx.Response(
        200, json={"access_token": "access-2", "expires_in": 3600}
    )
    provider.userinfo_response = httpx.Response(200, json={"id": 7, "name": "Renamed"})

    clock.advance(3600)
    identity = await svc.current_member(session_id)

    assert identity is not None and identity.name == "Renamed"
    refresh_form = provider.form(provider.calls(provider.TOKEN_URL)[-1])
    assert refresh_form["grant_type"] == "refresh_token"
    assert refresh_form["refresh_token"] == "refresh-1"

    member = svc.sessions.get(session_id)
    assert member.tokens.access_token == "access-2"
    # Provider omitted a new refresh token, the previous one is kept
    assert member.tokens.refresh_token == "refresh-1"


@pytest.mark.anyio
async def test_current_member_rejected_refresh_ends_session(
    oauth_config, provider, clock: FixedClock
) -> None:
    svc = _service(oauth_config, provider, clock)
    session_id = await _signed_in(svc)
    provider.token_response = httpx.Response(400, json={"error": "invalid_grant"})

    clock.advance(3600)

    assert await svc.current_member(session_id) is None
    assert svc.sessions.get(session_id) is None


@pytest.mark.anyio
async def test_current_member_network_error_keeps_session(
    oauth_config, provider, clock: FixedClock
) -> None:
    svc = _service(oauth_config, provider, clock)
    session_id = await _signed_in(svc)
    provider.token_response = httpx.ConnectError("down")

    clock.advance(3600)

    with pytest.raises(NetworkError):
        await svc.current_member(session_id)
    assert svc.sessions.get(session_id) is not None


@pytest.mark.anyio
async def test_current_member_without_refresh_token_ends_session(
    oauth_config, provider, clock: FixedClock
) -> None:
    provider.token_response = httpx.Response(
        200, json={"access_token": "access-1", "expires_in": 60}
    )
    svc = _service(oauth_config, provider, clock)
    session_id = await _signed_in(svc)

    clock.advance(60)

    assert await svc.current_member(session_id) is None
    assert len(svc.sessions) == 0


@pytest.mark.anyio
async def test_current_member_needs_session_registry(oauth_config, provider, clock) -> None:
    svc = _service(oauth_config, provider, clock, CountingBinder())

    with pytest.raises(TypeError):
        await svc.current_member("bound-1")


@pytest.mark.anyio
async def test_logout_revokes_and_drops_session(oauth_config, provider, clock) -> None:
    svc = _service(oauth_config, provider, clock)
    session_id = await _signed_in(svc)

    assert await svc.logout(session_id) is True

    revoke_form = provider.form(provider.calls(provider.REVOKE_URL)[0])
    assert revoke_form["token"] == "access-1"
    assert await svc.current_member(session_id) is None


@pytest.mark.anyio
async def test_logout_survives_unreachable_provider(oauth_config, provider, clock) -> None:
    svc = _service(oauth_config, provider, clock)
    session_id = await _signed_in(svc)
    provider.revoke_response = httpx.ReadTimeout("slow")

    assert await svc.logout(session_id) is False
    assert svc.sessions.get(session_id) is None


@pytest.mark.anyio
async def test_logout_unknown_session(oauth_config, provider, clock) -> None:
    svc = _service(oauth_config, provider, clock)

    assert await svc.logout("nobody") is False
    assert provider.requests == []


@pytest.mark.anyio
async def test_aclose_closes_owned_client(oauth_config, clock) -> None:
    svc = build_auth_service(oauth_config, clock=clock)
    client = svc.tokens._http_client

    await svc.aclose()

    assert client.is_closed


@pytest.mark.anyio
async def test_aclose_leaves_injected_client_open(oauth_config, provider, clock) -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider))
    svc = build_auth_service(oauth_config, http_client=client, clock=clock)

    await svc.aclose()

    assert client.is_closed is False
    await client.aclose()


def test_registry_issues_new_session_id_per_login(clock) -> None:
    registry = InMemorySessionRegistry(clock=clock)
    identity = UserIdentity(id="7")
    tokens = TokenSet("a", "Bearer", 3600, clock())

    first = registry.on_authenticated(identity, tokens)
    second = registry.on_authenticated(identity, tokens)

    assert first.session_id != second.session_id
    assert len(registry) == 2
    assert registry.delete(first.session_id) is True
    assert registry.delete(first.session_id) is False


def test_registry_drops_idle_sessions(clock: FixedClock) -> None:
    registry = InMemorySessionRegistry(ttl_seconds=3600, clock=clock)
    handle = registry.on_authenticated(UserIdentity(id="7"), TokenSet("a", "Bearer", 60, clock()))

    clock.advance(1800)
    assert registry.get(handle.session_id) is not None
    # A token update keeps the session alive
    registry.update(handle.session_id, tokens=TokenSet("b", "Bearer", 60, clock()))

    clock.advance(3000)
    assert registry.get(handle.session_id) is not None

    clock.advance(3601)
    assert registry.get(handle.session_id) is None
    assert len(registry) == 0


def test_registry_is_bounded(clock: FixedClock) -> None:
    registry = InMemorySessionRegistry(maxsize=2, clock=clock)
    tokens = TokenSet("a", "Bearer", 3600, clock())
    handles = [registry.on_authenticated(UserIdentity(id=str(i)), tokens) for i in range(3)]

    assert len(registry) == 2
    assert registry.get(handles[-1].session_id) is not None


# --------------------------------------------------------------------------- #
# Concurrent refresh                                                          #
# --------------------------------------------------------------------------- #
def _rotating_provider(provider):
    """Token endpoint that rotates refresh tokens and rejects reuse."""
    used: set[str] = set()

    async def handler(request: httpx.Request) -> httpx.Response:
        await anyio.sleep(0.01)
        if str(request.url) == provider.TOKEN_URL:
            form = provider.form(request)
            if form["grant_type"] == "refresh_token":
                provider.requests.append(request)
                if form["refresh_token"] in used:
                    return httpx.Response(400, json={"error": "invalid_grant"})
                used.add(form["refresh_token"])
                return httpx.Response(
                    200,
                    json={
                        "access_token": f"access-{len(used) + 1}",
                        "refresh_token": f"refresh-{len(used) + 1}",
                        "expires_in": 3600,
                    },
                )
        return provider(request)

    return handler


@pytest.mark.anyio
async def test_concurrent_lookups_share_one_refresh(
    oauth_config, provider, clock: FixedClock
) -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(_rotating_provider(provider)))
    svc = build_auth_service(oauth_config, http_client=client, clock=clock)
    session_id = await _signed_in(svc)
    clock.advance(3600)

    results = []

    async def lookup() -> None:
        results.append(await svc.current_member(session_id))

    async with anyio.create_task_group() as tg:
        tg.start_soon(lookup)
        tg.start_soon(lookup)

    assert [identity.id for identity in results] == ["7", "7"]
    refreshes = [
        r
        for r in provider.calls(provider.TOKEN_URL)
        if provider.form(r)["grant_type"] == "refresh_token"
    ]
    assert len(refreshes) == 1
    member = svc.sessions.get(session_id)
    assert member is not None
    assert member.tokens.refresh_token == "refresh-2"


@pytest.mark.anyio
async def test_logout_during_refresh_returns_no_member(
    oauth_config, provider, clock: FixedClock
) -> None:
    svc_holder: list[PortalAuthService] = []
    session_ids: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == provider.USERINFO_URL and session_ids:
            # Member logs out while the refreshed identity is being fetched
            svc_holder[0].sessions.delete(session_ids[0])
        return provider(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    svc = build_auth_service(oauth_config, http_client=client, clock=clock)
    svc_holder.append(svc)
    session_ids.append(await _signed_in(svc))
    clock.advance(3600)

    assert await svc.current_member(session_ids[0]) is None
    assert svc.sessions.get(session_ids[0]) is None


@pytest.mark.anyio
async def test_flow_logs_carry_correlation_id(
    oauth_config, provider, clock, caplog: pytest.LogCaptureFixture
) -> None:
    svc = _service(oauth_config, provider, clock)

    with caplog.at_level(logging.DEBUG, logger="captive-portal.oauth.flow"):
        start = svc.start_login(correlation_id="req-42")
        await svc.complete_login("auth-code", start.csrf_token, correlation_id="req-42")

    records = [r for r in caplog.records if r.name == "captive-portal.oauth.flow"]
    assert records
    assert all(r.correlation_id == "req-42" for r in records)
    assert all(r.flow_id == start.csrf_token[:6] for r in records)
    assert records[-1].user_id == "7"
