"""Unit tests for booking rule validation."""
from dataclasses import replace
from datetime import date, datetime, time
from types import SimpleNamespace

import pytest

from common.models import BookingStatus, RoomStatus
from scheduling.clock import FixedClock
from scheduling.errors import ValidationError
from scheduling.policy import SchedulingPolicy
from scheduling.validation import BookingRequest, BookingValidator

TODAY = date(2030, 1, 7)
VALIDATOR = BookingValidator(SchedulingPolicy(), FixedClock(datetime(2030, 1, 7, 7, 0)))
BASE = BookingRequest(
    room_id=1,
    booking_date=TODAY,
    start_time=time(9, 0),
    end_time=time(10, 0),
    purpose="Team sync",
)
ROOM = SimpleNamespace(
    id=1,
    room_number="101",
    capacity=30,
    status=RoomStatus.AVAILABLE,
    operating_start=time(8, 0),
    operating_end=time(20, 0),
)


def rule_for(request, room=None, bookings=None):
    with pytest.raises(ValidationError) as excinfo:
        VALIDATOR.validate(request, room=room, bookings=bookings)
    return excinfo.value.rule


class TestStatelessRules:
    def test_accepts_a_plain_request(self):
        VALIDATOR.validate(BASE)
        VALIDATOR.validate(BASE, room=ROOM, bookings=[])

    @pytest.mark.parametrize(
        "changes,rule",
        [
            ({"room_id": None}, "room_required"),
            ({"purpose": ""}, "purpose_required"),
            ({"purpose": "  \t"}, "purpose_required"),
            ({"booking_date": date(2030, 1, 6)}, "date_in_past"),
            ({"booking_date": date(2030, 1, 14)}, "beyond_horizon"),
            ({"start_time": time(9, 15)}, "unaligned_time"),
            ({"end_time": time(10, 10)}, "unaligned_time"),
            ({"start_time": time(7, 30)}, "outside_booking_window"),
            ({"start_time": time(19, 0), "end_time": time(20, 30)}, "outside_booking_window"),
            ({"start_time": time(20, 0), "end_time": time(20, 0)}, "outside_booking_window"),
            ({"start_time": time(11, 0), "end_time": time(10, 0)}, "end_not_after_start"),
            ({"start_time": time(9, 0, 30)}, "unaligned_time"),
        ],
    )
    def test_rejections(self, changes, rule):
        assert rule_for(replace(BASE, **changes)) == rule

    def test_horizon_boundaries(self):
        VALIDATOR.validate(replace(BASE, booking_date=date(2030, 1, 13)))
        assert rule_for(replace(BASE, booking_date=date(2030, 1, 14))) == "beyond_horizon"

    def test_closing_time_may_end_but_not_start_a_booking(self):
        VALIDATOR.validate(replace(BASE, start_time=time(19, 30), end_time=time(20, 0)))
        VALIDATOR.validate(replace(BASE, start_time=time(8, 0), end_time=time(8, 30)))

    def test_first_failure_wins(self):
        request = replace(BASE, booking_date=date(2029, 12, 31), start_time=time(9, 15), purpose="")
        assert rule_for(request) == "purpose_required"
        assert rule_for(replace(request, purpose="Exam")) == "date_in_past"

    def test_collect_errors_lists_every_failing_rule(self):
        request = replace(BASE, booking_date=date(2029, 12, 31), start_time=time(9, 15), purpose="")
        rules = [error.rule for error in VALIDATOR.collect_errors(request)]
        assert rules == ["purpose_required", "date_in_past", "unaligned_time"]

    def test_horizon_follows_policy(self):
        validator = BookingValidator(SchedulingPolicy(horizon_days=14), FixedClock(datetime(2030, 1, 7, 7, 0)))
        validator.validate(replace(BASE, booking_date=date(2030, 1, 14)))


class TestRoomRules:
    def test_room_in_maintenance(self):
        room = SimpleNamespace(**{**vars(ROOM), "status": RoomStatus.MAINTENANCE})
        assert rule_for(BASE, room=room) == "room_under_maintenance"

    def test_capacity(self):
        assert rule_for(replace(BASE, attendees=31), room=ROOM) == "capacity_exceeded"
        VALIDATOR.validate(replace(BASE, attendees=30), room=ROOM)

    def test_room_operating_hours(self):
        room = SimpleNamespace(**{**vars(ROOM), "operating_start": time(10, 0), "operating_end": time(16, 0)})
        assert rule_for(BASE, room=room) == "outside_operating_hours"

    def test_range_must_be_free(self):
        bookings = [SimpleNamespace(id=9, start_time=time(9, 30), end_time=time(10, 0), status=BookingStatus.SCHEDULED)]
        assert rule_for(BASE, room=ROOM, bookings=bookings) == "slot_unavailable"

    def test_adjacent_booking_does_not_block(self):
        bookings = [SimpleNamespace(id=9, start_time=time(10, 0), end_time=time(11, 0), status=BookingStatus.SCHEDULED)]
        VALIDATOR.validate(BASE, room=ROOM, bookings=bookings)
