"""
Clock abstraction for cache validity and rate-limit countdowns.

SystemClock in production; MockClock lets tests move time forward
without sleeping.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
import time


class ClockProtocol(ABC):
    """Abstract interface for wall-clock time."""

    @abstractmethod
    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        pass


class SystemClock(ClockProtocol):
    """Production clock using actual system time."""

    def timestamp(self) -> float:
        return time.time()


class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Time only moves when advance() is called.
    """

    def __init__(self, initial_timestamp: float = datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp()):
        self._timestamp = initial_timestamp

    def timestamp(self) -> float:
        return self._timestamp

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        self._timestamp += timedelta(seconds=seconds, **kwargs).total_seconds()
