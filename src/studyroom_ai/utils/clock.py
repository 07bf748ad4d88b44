"""
Time sources for components with time-based expiry.

The schema snapshot loader and the conversation store take a clock by
construction so tests can move time forward without sleeping.
"""

import time
from typing import Protocol


class Clock(Protocol):
    """Anything that returns the current time in seconds."""

    def now(self) -> float:
        ...


class SystemClock:
    """Monotonic wall-independent clock used in production."""

    def now(self) -> float:
        return time.monotonic()
