"""Slot grid generation and the derived schedule value types.

Slots are never stored: they are computed from a room's operating window every
time a schedule is read.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from typing import Iterator, List, Optional

from .errors import InvalidOperatingWindow

MINUTES_PER_DAY = 24 * 60


def to_minutes(value: time) -> int:
    """Minutes since midnight."""
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    """Inverse of ``to_minutes``; 24:00 is not representable and raises."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"{minutes} minutes is outside a single day")
    return time(minutes // 60, minutes % 60)


def slot_end(start: time, slot_minutes: int = 30) -> time:
    """End of the slot starting at ``start``; a slot ending at midnight is rejected."""
    return from_minutes(to_minutes(start) + slot_minutes)


def is_whole_minute(value: time) -> bool:
    return value.second == 0 and value.microsecond == 0


def generate_slot_starts(start: time, end: time, slot_minutes: int = 30) -> List[time]:
    """
    Ordered slot start times for an operating window.

    Runs from ``start`` (inclusive) and stops once another slot would end past
    ``end``; 08:00-20:00 gives 24 slots, 08:00 through 19:30.
    """
    if not (is_whole_minute(start) and is_whole_minute(end)):
        raise InvalidOperatingWindow(
            f"Operating window {start.isoformat()}-{end.isoformat()} must be on whole minutes"
        )
    if start >= end:
        raise InvalidOperatingWindow(
            f"Operating start {start.strftime('%H:%M')} must be before end {end.strftime('%H:%M')}"
        )
    first, last = to_minutes(start), to_minutes(end)
    if last - first < slot_minutes:
        raise InvalidOperatingWindow(
            f"Operating window {start.strftime('%H:%M')}-{end.strftime('%H:%M')} is shorter than one slot"
        )
    return [from_minutes(minute) for minute in range(first, last - slot_minutes + 1, slot_minutes)]


def iter_range_slots(start: time, end: time, slot_minutes: int = 30) -> Iterator[time]:
    """Slot starts that tile ``[start, end)``."""
    minute = to_minutes(start)
    stop = to_minutes(end)
    while minute < stop:
        yield from_minutes(minute)
        minute += slot_minutes


def ranges_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open ranges share at least one instant."""
    return start_a < end_b and start_b < end_a


@dataclass(frozen=True)
class Slot:
    slot_time: time
    end_time: time
    is_available: bool = True
    booking_id: Optional[int] = None


@dataclass(frozen=True)
class DaySchedule:
    room_id: int
    date: date
    slots: List[Slot] = field(default_factory=list)
    day_offset: Optional[int] = None

    @property
    def available_count(self) -> int:
        return sum(1 for slot in self.slots if slot.is_available)


@dataclass(frozen=True)
class WeeklySchedule:
    room_id: int
    room_number: str
    week_schedule: List[DaySchedule] = field(default_factory=list)


def check_operating_window(start: time, end: time, slot_minutes: int = 30) -> None:
    """Reject operating windows whose bounds do not sit on the slot grid."""
    generate_slot_starts(start, end, slot_minutes)
    for value in (start, end):
        if to_minutes(value) % slot_minutes:
            raise InvalidOperatingWindow(
                f"Operating hours must fall on {slot_minutes}-minute boundaries, got {value.strftime('%H:%M')}"
            )
