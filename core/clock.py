"""
Clock abstraction used by the scheduler.

The scheduler reads time only through a Clock, so backoff and ceiling
behaviour can be driven by a fake clock in tests.
"""

import time


class Clock:
    """Monotonic seconds."""

    def now(self) -> float:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> float:
        return time.monotonic()
