"""
Clock abstraction.

All waits in openemr-ops are sleep-and-poll loops with bounded totals, and
leader staleness is judged against wall-clock time. Routing both through a
``Clock`` makes poll interval, staleness timeout and maximum wait testable
without real sleeping.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of wall-clock time and blocking sleep."""

    def time(self) -> float:
        """Current time as epoch seconds."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for ``seconds``."""
        ...


class SystemClock:
    """Real clock backed by :mod:`time`."""

    def time(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def utc_now(clock: Clock | None = None) -> datetime:
    """Current UTC datetime, optionally taken from ``clock``."""
    if clock is None:
        return datetime.now(UTC)
    return datetime.fromtimestamp(clock.time(), UTC)
