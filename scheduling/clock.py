"""Reference "now" for scheduling decisions.

Every component asks a clock for the current instant instead of reading the
wall clock, so "today" is always computed in the single configured timezone.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from zoneinfo import ZoneInfo

from .policy import get_scheduling_policy


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current aware instant in the configured timezone."""

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def __init__(self, timezone: str) -> None:
        self._tz = ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FixedClock(Clock):
    """Clock frozen at a given instant. Naive datetimes are taken as local time."""

    def __init__(self, instant: datetime, timezone: str = "Asia/Dhaka") -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=ZoneInfo(timezone))
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self._instant.tzinfo)
        self._instant = instant


def get_clock() -> Clock:
    """FastAPI dependency; tests override it with a ``FixedClock``."""
    return SystemClock(get_scheduling_policy().timezone)
