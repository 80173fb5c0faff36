"""Time source used by the member-login flow.

Every expiry decision in :mod:`captive_portal.oauth` (flow-state TTL, token
expiry, session timestamps) goes through an injected ``Clock`` instead of
calling ``time.time()`` directly, so tests can pin or advance time.

Example
-------
>>> from captive_portal.oauth.clock import FixedClock
>>> clock = FixedClock(1_000.0)
>>> clock.advance(30)
>>> clock()
1030.0
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Wall-clock time via ``time.time()``."""
    return time.time()


@dataclass
class FixedClock:
    """Clock frozen at ``now`` until explicitly moved."""

    now: float = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
