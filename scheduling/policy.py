"""System-wide scheduling configuration."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from functools import lru_cache

from common.config import Settings, get_settings


def parse_clock(value: str) -> time:
    """Parse ``"HH:MM"`` into a ``time``."""
    hour, minute = value.strip().split(":")
    return time(int(hour), int(minute))


@dataclass(frozen=True)
class SchedulingPolicy:
    """
    Scheduling constants shared by every room.

    Attributes:
        slot_minutes: Width of a bookable slot in minutes.
        window_open: Earliest time a booking may start.
        window_close: Latest time a booking may end.
        horizon_days: Bookings are accepted for today .. today + horizon_days - 1.
        timezone: IANA name of the calendar that decides "today".
    """

    slot_minutes: int = 30
    window_open: time = time(8, 0)
    window_close: time = time(20, 0)
    horizon_days: int = 7
    timezone: str = "Asia/Dhaka"

    def __post_init__(self) -> None:
        if self.slot_minutes <= 0 or (24 * 60) % self.slot_minutes:
            raise ValueError(f"slot_minutes must divide a day evenly, got {self.slot_minutes}")
        if self.window_open >= self.window_close:
            raise ValueError("booking window must open before it closes")
        if self.horizon_days < 1:
            raise ValueError(f"horizon_days must be positive, got {self.horizon_days}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulingPolicy":
        return cls(
            slot_minutes=settings.slot_minutes,
            window_open=parse_clock(settings.booking_window_open),
            window_close=parse_clock(settings.booking_window_close),
            horizon_days=settings.horizon_days,
            timezone=settings.timezone,
        )


@lru_cache
def get_scheduling_policy() -> SchedulingPolicy:
    return SchedulingPolicy.from_settings(get_settings())
