"""Session hand-off seam.

Once a member is authenticated the flow calls
:meth:`SessionBinder.on_authenticated` exactly once.  How a session is issued
and persisted is up to the binder; the login flow only relies on the returned
:class:`SessionHandle`.

:class:`InMemorySessionRegistry` is the minimal binder the portal server uses
by default.  It also supports the lookups needed by ``/me`` and ``/logout``.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass, replace
from typing import Awaitable, Final, Protocol, runtime_checkable

from cachetools import TTLCache

from captive_portal.oauth.clock import Clock, default_clock
from captive_portal.oauth.models import TokenSet, UserIdentity

_LOG = logging.getLogger("captive-portal.oauth.session")

DEFAULT_SESSION_TTL: Final[int] = 30 * 24 * 60 * 60  # 30 days


@dataclass(frozen=True, slots=True)
class SessionHandle:
    """Reference to the session created for an authenticated member."""

    session_id: str
    user_id: str


@dataclass(frozen=True, slots=True)
class MemberSession:
    session_id: str
    identity: UserIdentity
    tokens: TokenSet
    created_at: float


@runtime_checkable
class SessionBinder(Protocol):
    """Receives the identity and tokens of a completed login."""

    def on_authenticated(
        self, identity: UserIdentity, tokens: TokenSet
    ) -> SessionHandle | Awaitable[SessionHandle]: ...


@runtime_checkable
class SessionRegistry(SessionBinder, Protocol):
    """Binder that can also look sessions up again."""

    def get(self, session_id: str) -> MemberSession | None: ...

    def update(
        self,
        session_id: str,
        *,
        tokens: TokenSet | None = None,
        identity: UserIdentity | None = None,
    ) -> MemberSession | None: ...

    def delete(self, session_id: str) -> bool: ...


class InMemorySessionRegistry(SessionRegistry):
    """Process-local member sessions keyed by a random session id.

    Sessions idle for longer than ``ttl_seconds`` (reset on every token
    update) are dropped, and at most ``maxsize`` sessions are kept.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_SESSION_TTL,
        maxsize: int = 100_000,
        clock: Clock = default_clock,
    ) -> None:
        self._clock = clock
        self._sessions: TTLCache[str, MemberSession] = TTLCache(
            maxsize=maxsize, ttl=ttl_seconds, timer=clock
        )
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._sessions.expire()
            return len(self._sessions)

    def on_authenticated(self, identity: UserIdentity, tokens: TokenSet) -> SessionHandle:
        # A new id on every login so a pre-login cookie is never promoted
        session_id = secrets.token_hex(16)
        record = MemberSession(
            session_id=session_id,
            identity=identity,
            tokens=tokens,
            created_at=self._clock(),
        )
        with self._lock:
            self._sessions[session_id] = record
        _LOG.info("Bound session for user id=%s", identity.id)
        return SessionHandle(session_id=session_id, user_id=identity.id)

    def get(self, session_id: str) -> MemberSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def update(
        self,
        session_id: str,
        *,
        tokens: TokenSet | None = None,
        identity: UserIdentity | None = None,
    ) -> MemberSession | None:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                return None
            updated = replace(
                current,
                tokens=tokens or current.tokens,
                identity=identity or current.identity,
            )
            self._sessions[session_id] = updated
            return updated

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None
