"""Time sources, in integer epoch milliseconds.

Every detector takes a ``clock`` callable so that window boundaries can be
tested to the millisecond and so the replay pipeline can drive detectors
with recorded timestamps instead of wall-clock time.
"""

from __future__ import annotations

import time
from collections.abc import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


class ManualClock:
    """A clock that only moves when told to."""

    __slots__ = ("_now",)

    def __init__(self, start_ms: int = 0) -> None:
        self._now = int(start_ms)

    def __call__(self) -> int:
        return self._now

    def advance(self, ms: int) -> int:
        self._now += int(ms)
        return self._now

    def set(self, ms: int) -> None:
        self._now = int(ms)

    def __repr__(self) -> str:
        return f"ManualClock({self._now})"
