"""
Room booking scheduling core.

Slot grid generation, availability, booking validation, booking transactions
and weekly schedule aggregation.
"""

from .availability import find_available_rooms, is_range_free, resolve_day_schedule
from .clock import Clock, FixedClock, SystemClock, get_clock
from .errors import (
    ConflictError,
    ForbiddenError,
    InvalidOperatingWindow,
    InvalidStateError,
    NotFoundError,
    PartialFailureError,
    SchedulingError,
    ValidationError,
)
from .policy import SchedulingPolicy, get_scheduling_policy
from .repository import BookingRepository
from .slots import DaySchedule, Slot, WeeklySchedule, generate_slot_starts
from .transactions import BookingTransactionManager
from .validation import BookingRequest, BookingValidator
from .weekly import build_day_schedule, build_offset_schedule, build_weekly_schedule

__all__ = [
    "BookingRepository",
    "BookingRequest",
    "BookingTransactionManager",
    "BookingValidator",
    "Clock",
    "ConflictError",
    "DaySchedule",
    "FixedClock",
    "ForbiddenError",
    "InvalidOperatingWindow",
    "InvalidStateError",
    "NotFoundError",
    "PartialFailureError",
    "SchedulingError",
    "SchedulingPolicy",
    "Slot",
    "SystemClock",
    "ValidationError",
    "WeeklySchedule",
    "build_day_schedule",
    "build_offset_schedule",
    "build_weekly_schedule",
    "find_available_rooms",
    "generate_slot_starts",
    "get_clock",
    "get_scheduling_policy",
    "is_range_free",
    "resolve_day_schedule",
]
