from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float: ...


class SystemClock:
    """Wall clock in unix seconds."""

    def now(self) -> float:
        return float(time.time())


class ManualClock:
    """
    Clock that only moves when told to. Tests use it to step a host through
    ping, sweep and recovery at exact timestamps.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def set(self, ts: float) -> None:
        self._now = float(ts)

    def advance(self, seconds: float) -> float:
        self._now += float(seconds)
        return self._now
