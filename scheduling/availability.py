"""Overlay bookings on a room's slot grid and search for free rooms."""
from __future__ import annotations

import logging
from datetime import date, time
from typing import List, Optional, Sequence

from common.models import Booking, BookingStatus, Room, RoomStatus

from .errors import ValidationError
from .policy import SchedulingPolicy, get_scheduling_policy
from .repository import BookingRepository
from .slots import (
    DaySchedule,
    Slot,
    generate_slot_starts,
    is_whole_minute,
    iter_range_slots,
    ranges_overlap,
    slot_end,
    to_minutes,
)

logger = logging.getLogger(__name__)


def _scheduled(bookings: Sequence[Booking]) -> List[Booking]:
    return [booking for booking in bookings if booking.status == BookingStatus.SCHEDULED]


def annotate_slots(
    slot_starts: Sequence[time],
    bookings: Sequence[Booking],
    slot_minutes: int = 30,
) -> List[Slot]:
    """Mark each slot unavailable when a scheduled booking intersects it."""
    active = sorted(_scheduled(bookings), key=lambda booking: booking.start_time)
    slots: List[Slot] = []
    for start in slot_starts:
        end = slot_end(start, slot_minutes)
        owner = next(
            (booking for booking in active if ranges_overlap(start, end, booking.start_time, booking.end_time)),
            None,
        )
        slots.append(
            Slot(
                slot_time=start,
                end_time=end,
                is_available=owner is None,
                booking_id=owner.id if owner is not None else None,
            )
        )
    return slots


def resolve_day_schedule(
    room: Room,
    day: date,
    bookings: Sequence[Booking],
    policy: Optional[SchedulingPolicy] = None,
    day_offset: Optional[int] = None,
) -> DaySchedule:
    policy = policy or get_scheduling_policy()
    starts = generate_slot_starts(room.operating_start, room.operating_end, policy.slot_minutes)
    return DaySchedule(
        room_id=room.id,
        date=day,
        slots=annotate_slots(starts, bookings, policy.slot_minutes),
        day_offset=day_offset,
    )


def is_range_free(
    room: Room,
    start: time,
    end: time,
    bookings: Sequence[Booking],
    policy: Optional[SchedulingPolicy] = None,
) -> bool:
    """
    True when every slot tiling ``[start, end)`` exists in the room's grid and is free.

    A range that starts off-grid or leaves the operating window is never free.
    """
    policy = policy or get_scheduling_policy()
    starts = generate_slot_starts(room.operating_start, room.operating_end, policy.slot_minutes)
    wanted = list(iter_range_slots(start, end, policy.slot_minutes))
    if not wanted or not set(wanted) <= set(starts):
        return False
    return all(slot.is_available for slot in annotate_slots(wanted, bookings, policy.slot_minutes))


def check_search_window(start: time, end: time, policy: SchedulingPolicy) -> None:
    if start >= end:
        raise ValidationError("end_not_after_start", "End time must be after start time")
    for value in (start, end):
        if not is_whole_minute(value) or to_minutes(value) % policy.slot_minutes:
            raise ValidationError(
                "unaligned_time",
                f"Times must fall on {policy.slot_minutes}-minute boundaries, got {value.strftime('%H:%M:%S')}",
            )


def find_available_rooms(
    repository: BookingRepository,
    day: date,
    start: time,
    end: time,
    purpose: Optional[str] = None,
    min_capacity: Optional[int] = None,
    policy: Optional[SchedulingPolicy] = None,
) -> List[Room]:
    """Rooms that are open for booking and fully free over ``[start, end)`` on ``day``."""
    policy = policy or get_scheduling_policy()
    check_search_window(start, end, policy)
    candidates = repository.list_rooms(
        status=RoomStatus.AVAILABLE,
        min_capacity=min_capacity,
        purpose=purpose,
        limit=None,
    )
    bookings_by_room = repository.list_scheduled_bookings_for_rooms((room.id for room in candidates), day)
    free = [
        room
        for room in candidates
        if is_range_free(room, start, end, bookings_by_room.get(room.id, []), policy)
    ]
    logger.debug(
        "room search %s %s-%s: %d of %d candidates free",
        day.isoformat(),
        start.strftime("%H:%M"),
        end.strftime("%H:%M"),
        len(free),
        len(candidates),
    )
    return free
