"""Wall-clock abstraction for token expiry decisions."""
from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current UNIX time in seconds."""

    def now(self) -> float:
        ...


class SystemClock:
    """Reads :func:`time.time`."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """A clock that only moves when told to (test helper)."""

    def __init__(self, start: float | None = None) -> None:
        self._now = time.time() if start is None else start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def set(self, value: float) -> None:
        self._now = value
