"""Business-rule checks run before any booking write."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Callable, List, Optional, Sequence

from common.models import Booking, Room, RoomStatus

from .availability import is_range_free
from .clock import Clock
from .errors import ValidationError
from .policy import SchedulingPolicy
from .slots import is_whole_minute, to_minutes


@dataclass(frozen=True)
class BookingRequest:
    room_id: Optional[int]
    booking_date: date
    start_time: time
    end_time: time
    purpose: str
    notes: Optional[str] = None
    attendees: Optional[int] = None
    request_token: Optional[str] = None


def _hhmm(value: time) -> str:
    return value.strftime("%H:%M")


class BookingValidator:
    """
    Validates a ``BookingRequest``.

    Checks run in a fixed order and stop at the first failure: once the date is
    out of range there is no point judging the time of day.
    """

    def __init__(self, policy: SchedulingPolicy, clock: Clock) -> None:
        self.policy = policy
        self.clock = clock

    def validate(
        self,
        request: BookingRequest,
        room: Optional[Room] = None,
        bookings: Optional[Sequence[Booking]] = None,
    ) -> None:
        for check in self._stateless_checks():
            check(request)
        if room is not None:
            self.check_room(request, room, bookings or [])

    def collect_errors(self, request: BookingRequest) -> List[ValidationError]:
        """Every failing request-only rule, for form previews."""
        errors: List[ValidationError] = []
        for check in self._stateless_checks():
            try:
                check(request)
            except ValidationError as exc:
                errors.append(exc)
        return errors

    def _stateless_checks(self) -> List[Callable[[BookingRequest], None]]:
        return [
            self._check_required_fields,
            self._check_horizon,
            self._check_booking_window,
            self._check_order,
            self._check_alignment,
        ]

    def _check_required_fields(self, request: BookingRequest) -> None:
        if not request.room_id:
            raise ValidationError("room_required", "Please select a room")
        if not request.purpose or not request.purpose.strip():
            raise ValidationError("purpose_required", "Please enter the purpose of booking")

    def _check_horizon(self, request: BookingRequest) -> None:
        today = self.clock.today()
        if request.booking_date < today:
            raise ValidationError("date_in_past", f"Booking date {request.booking_date.isoformat()} is in the past")
        last_day = today + timedelta(days=self.policy.horizon_days)
        if request.booking_date >= last_day:
            raise ValidationError(
                "beyond_horizon",
                f"Bookings can only be made up to {self.policy.horizon_days} days ahead "
                f"(before {last_day.isoformat()})",
            )

    def _check_booking_window(self, request: BookingRequest) -> None:
        open_, close = self.policy.window_open, self.policy.window_close
        start_ok = open_ <= request.start_time < close
        end_ok = open_ < request.end_time <= close
        if not (start_ok and end_ok):
            raise ValidationError(
                "outside_booking_window",
                f"Booking time must be between {_hhmm(open_)} and {_hhmm(close)}",
            )

    def _check_order(self, request: BookingRequest) -> None:
        if request.end_time <= request.start_time:
            raise ValidationError("end_not_after_start", "End time must be after start time")

    def _check_alignment(self, request: BookingRequest) -> None:
        step = self.policy.slot_minutes
        for value in (request.start_time, request.end_time):
            if not is_whole_minute(value) or to_minutes(value) % step:
                raise ValidationError(
                    "unaligned_time",
                    f"Times must fall on {step}-minute boundaries, got {value.strftime('%H:%M:%S')}",
                )

    def check_room(self, request: BookingRequest, room: Room, bookings: Sequence[Booking]) -> None:
        if room.status == RoomStatus.MAINTENANCE:
            raise ValidationError("room_under_maintenance", f"Room {room.room_number} is under maintenance")
        if request.attendees is not None and request.attendees > room.capacity:
            raise ValidationError(
                "capacity_exceeded",
                f"Room {room.room_number} holds {room.capacity} people, {request.attendees} requested",
            )
        if request.start_time < room.operating_start or request.end_time > room.operating_end:
            raise ValidationError(
                "outside_operating_hours",
                f"Room {room.room_number} is open {_hhmm(room.operating_start)}-{_hhmm(room.operating_end)}",
            )
        if not is_range_free(room, request.start_time, request.end_time, bookings, self.policy):
            raise ValidationError(
                "slot_unavailable",
                f"Room {room.room_number} is not free {_hhmm(request.start_time)}-{_hhmm(request.end_time)}"
                f" on {request.booking_date.isoformat()}",
            )
