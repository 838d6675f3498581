"""Injectable time source so debounce, staleness and cooldown logic is testable."""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current POSIX time in seconds."""

    def now(self) -> float: ...


class SystemClock:
    """Wall-clock time via ``time.time()``."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """Clock that only moves when told to.

    Usage::

        clock = ManualClock(1_000.0)
        clock.advance(60)
        assert clock.now() == 1_060.0
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, secs: float) -> None:
        self._now += secs

    def set(self, ts: float) -> None:
        self._now = ts
