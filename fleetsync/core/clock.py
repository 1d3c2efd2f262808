"""Time sources for the sync engine.

Managers never read the wall clock directly; they ask a ``Clock`` so tests can
move time forward without sleeping.
"""

import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can report the current time as epoch seconds."""

    def now(self) -> float:
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> float:
        return time.time()


system_clock = SystemClock()
