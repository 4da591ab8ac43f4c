"""Day and week schedule composition for overview screens."""
from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from .availability import resolve_day_schedule
from .clock import Clock
from .errors import ValidationError
from .policy import SchedulingPolicy, get_scheduling_policy
from .repository import BookingRepository
from .slots import DaySchedule, WeeklySchedule

WEEK_DAYS = 7


def build_day_schedule(
    repository: BookingRepository,
    room_id: int,
    day: date,
    policy: Optional[SchedulingPolicy] = None,
    day_offset: Optional[int] = None,
) -> DaySchedule:
    room = repository.get_room(room_id)
    bookings = repository.list_scheduled_bookings(room.id, day)
    return resolve_day_schedule(room, day, bookings, policy, day_offset=day_offset)


def build_offset_schedule(
    repository: BookingRepository,
    room_id: int,
    day_offset: int,
    clock: Clock,
    policy: Optional[SchedulingPolicy] = None,
) -> DaySchedule:
    """Schedule for today + ``day_offset``; offsets run 0..6."""
    if not 0 <= day_offset < WEEK_DAYS:
        raise ValidationError("invalid_day_offset", f"day_offset must be between 0 and {WEEK_DAYS - 1}")
    day = clock.today() + timedelta(days=day_offset)
    return build_day_schedule(repository, room_id, day, policy, day_offset=day_offset)


def build_weekly_schedule(
    repository: BookingRepository,
    room_id: int,
    clock: Clock,
    policy: Optional[SchedulingPolicy] = None,
) -> WeeklySchedule:
    policy = policy or get_scheduling_policy()
    room = repository.get_room(room_id)
    today = clock.today()
    days = []
    for offset in range(WEEK_DAYS):
        day = today + timedelta(days=offset)
        bookings = repository.list_scheduled_bookings(room.id, day)
        days.append(resolve_day_schedule(room, day, bookings, policy, day_offset=offset))
    return WeeklySchedule(room_id=room.id, room_number=room.room_number, week_schedule=days)
