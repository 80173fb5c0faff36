"""Single-use storage for in-flight login attempts.

Between ``/login`` and ``/callback`` the portal must remember which code
verifier belongs to which ``state`` value.  This module introduces a *narrow*
interface (:class:`StateStore`) and two implementations:

* :class:`InMemoryStateStore` – a lock-guarded ``cachetools.TTLCache`` for
  single-process deployments.
* :class:`DiskStateStore` – JSON files for deployments running several
  worker processes on one host.

Both honour the same contract:

* **Single use** – :meth:`StateStore.consume` removes the entry; of two
  concurrent consumers of one token exactly one observes the flow.
* **Expiry** – entries older than the TTL are invisible and get purged.
* **Explicit ownership** – stores are constructed at process start and
  injected; there is no module-level singleton.

Environment variables
---------------------
PORTAL_STATE_DIR
    Base directory of :class:`DiskStateStore` when no ``base_dir`` is given.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict
from hashlib import sha256
from pathlib import Path
from typing import Protocol, runtime_checkable

from cachetools import TTLCache

from captive_portal.oauth.clock import Clock, default_clock
from captive_portal.oauth.models import DEFAULT_FLOW_TTL, FlowState

_LOG = logging.getLogger("captive-portal.oauth.store")

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 32) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class StateStore(Protocol):
    """Minimal persistence contract for in-flight login attempts."""

    def put(
        self,
        csrf_token: str,
        code_verifier: str,
        redirect_uri: str,
        *,
        session_id: str | None = None,
    ) -> None: ...

    def consume(self, csrf_token: str) -> FlowState | None: ...

    def cleanup_expired(self) -> int: ...

    def clear(self) -> None: ...


# --------------------------------------------------------------------------- #
# In-memory implementation                                                    #
# --------------------------------------------------------------------------- #


class InMemoryStateStore(StateStore):
    """``TTLCache`` backed store; the cache timer is the injected clock.

    ``maxsize`` bounds memory: once full, the oldest in-flight attempt is
    evicted and its callback will fail with an invalid-state error.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_FLOW_TTL,
        maxsize: int = 10_000,
        clock: Clock = default_clock,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._flows: TTLCache[str, FlowState] = TTLCache(
            maxsize=maxsize, ttl=ttl_seconds, timer=clock
        )
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._flows.expire()
            return len(self._flows)

    def put(
        self,
        csrf_token: str,
        code_verifier: str,
        redirect_uri: str,
        *,
        session_id: str | None = None,
    ) -> None:
        flow = FlowState(
            csrf_token=csrf_token,
            code_verifier=code_verifier,
            redirect_uri=redirect_uri,
            created_at=self._clock(),
            session_id=session_id,
            ttl_seconds=self.ttl_seconds,
        )
        with self._lock:
            # TTLCache purges expired entries on every insert
            self._flows[csrf_token] = flow

    def consume(self, csrf_token: str) -> FlowState | None:
        """Return and remove the flow for *csrf_token* (single-use)."""
        with self._lock:
            flow = self._flows.pop(csrf_token, None)
        if flow is None or flow.is_expired(clock=self._clock):
            return None
        return flow

    def cleanup_expired(self) -> int:
        with self._lock:
            # expire() returns the evicted (key, value) pairs
            return len(self._flows.expire())

    def clear(self) -> None:
        with self._lock:
            self._flows.clear()


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskStateStore(StateStore):
    """JSON-file implementation of :class:`StateStore`.

    File names are hashes of the CSRF token so a callback can never address a
    path outside ``base_dir/flows``.
    """

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        ttl_seconds: int = DEFAULT_FLOW_TTL,
        clock: Clock = default_clock,
    ) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("PORTAL_STATE_DIR")
            or Path.home() / ".captive-portal" / "state"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _flow_path(self, csrf_token: str) -> Path:
        return self.base_dir / "flows" / f"{_hash(csrf_token)}.json"

    def _claimed_path(self, csrf_token: str) -> Path:
        return self.base_dir / "flows" / "claimed" / f"{_hash(csrf_token)}.json"

    def put(
        self,
        csrf_token: str,
        code_verifier: str,
        redirect_uri: str,
        *,
        session_id: str | None = None,
    ) -> None:
        flow = FlowState(
            csrf_token=csrf_token,
            code_verifier=code_verifier,
            redirect_uri=redirect_uri,
            created_at=self._clock(),
            session_id=session_id,
            ttl_seconds=self.ttl_seconds,
        )
        _atomic_write(self._flow_path(csrf_token), asdict(flow))

    def consume(self, csrf_token: str) -> FlowState | None:
        """Claim the flow file by renaming it; the loser of a race gets *None*."""
        src = self._flow_path(csrf_token)
        dst = self._claimed_path(csrf_token)
        dst.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(src, dst)  # atomic rename – fails if concurrent consumer won
        except FileNotFoundError:
            return None
        try:
            with dst.open(encoding="utf-8") as fh:
                flow = FlowState(**json.load(fh))
        except (ValueError, TypeError) as exc:
            _LOG.warning("Discarding unreadable login flow file %s: %s", dst.name, exc)
            return None
        finally:
            dst.unlink(missing_ok=True)
        if flow.csrf_token != csrf_token or flow.is_expired(clock=self._clock):
            return None
        return flow

    def cleanup_expired(self) -> int:
        flowdir = self.base_dir / "flows"
        if not flowdir.exists():
            return 0
        removed = 0
        now = self._clock()
        for p in flowdir.glob("*.json"):
            try:
                with p.open(encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, ValueError):
                # Claimed or half-written by another worker
                continue
            ttl = float(data.get("ttl_seconds", self.ttl_seconds))
            created = float(data.get("created_at", 0))
            if (now - created) >= ttl:
                p.unlink(missing_ok=True)
                removed += 1
        if removed:
            _LOG.debug("Purged %d expired login flows", removed)
        return removed

    def clear(self) -> None:
        flowdir = self.base_dir / "flows"
        for p in flowdir.glob("*.json"):
            p.unlink(missing_ok=True)
