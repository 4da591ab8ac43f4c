"""Unit tests for the booking transaction manager."""
import threading
from dataclasses import replace
from datetime import date, datetime, time

import pytest
from sqlalchemy import func, select

from common.database import SessionLocal
from common.models import Booking, BookingStatus, RoleEnum, Room, RoomDayLedger, User
from scheduling.clock import FixedClock
from scheduling.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from scheduling.policy import SchedulingPolicy
from scheduling.transactions import BookingTransactionManager
from scheduling.validation import BookingRequest

DAY = date(2030, 1, 7)
CLOCK = FixedClock(datetime(2030, 1, 7, 7, 0))


@pytest.fixture()
def seeded(db_session):
    owner = User(name="Owner", username="owner", email="owner@example.com", hashed_password="x", role=RoleEnum.FACULTY)
    other = User(name="Other", username="other", email="other@example.com", hashed_password="x", role=RoleEnum.STUDENT)
    admin = User(name="Admin", username="root", email="root@example.com", hashed_password="x", role=RoleEnum.ADMIN)
    room = Room(room_number="101", name="Seminar Room", purpose="Lecture", capacity=30)
    db_session.add_all([owner, other, admin, room])
    db_session.commit()
    return {"owner": owner, "other": other, "admin": admin, "room": room}


def manager_for(session):
    return BookingTransactionManager(session, policy=SchedulingPolicy(), clock=CLOCK)


def request(room_id, start, end, **extra):
    return BookingRequest(room_id=room_id, booking_date=DAY, start_time=start, end_time=end, purpose="Lecture", **extra)


class TestCreate:
    def test_create_assigns_id_and_bumps_ledger(self, db_session, seeded):
        manager = manager_for(db_session)

        booking = manager.create(request(seeded["room"].id, time(9, 0), time(10, 0)), seeded["owner"])

        assert booking.id is not None
        assert booking.status == BookingStatus.SCHEDULED
        ledger = db_session.scalars(select(RoomDayLedger)).one()
        assert (ledger.room_id, ledger.booking_date, ledger.version) == (seeded["room"].id, DAY, 1)

    def test_overlap_conflicts_and_adjacent_succeeds(self, db_session, seeded):
        manager = manager_for(db_session)
        room_id = seeded["room"].id
        manager.create(request(room_id, time(9, 0), time(10, 0)), seeded["owner"])

        with pytest.raises(ConflictError):
            manager.create(request(room_id, time(9, 30), time(10, 30)), seeded["other"])
        manager.create(request(room_id, time(10, 0), time(11, 0)), seeded["other"])

        assert db_session.scalar(select(func.count(Booking.id))) == 2

    def test_validation_runs_before_any_write(self, db_session, seeded):
        manager = manager_for(db_session)

        with pytest.raises(ValidationError):
            manager.create(request(seeded["room"].id, time(9, 15), time(10, 0)), seeded["owner"])

        assert db_session.scalar(select(func.count(Booking.id))) == 0
        assert db_session.scalar(select(func.count(RoomDayLedger.id))) == 0

    def test_missing_room(self, db_session, seeded):
        with pytest.raises(NotFoundError):
            manager_for(db_session).create(request(404, time(9, 0), time(10, 0)), seeded["owner"])

    def test_lost_compare_and_swap_rolls_back(self, db_session, seeded):
        manager = manager_for(db_session)
        room_id = seeded["room"].id
        manager.create(request(room_id, time(9, 0), time(10, 0)), seeded["owner"])

        original_claim = manager._claim_ledger

        def stale_claim(room, day):
            original_claim(room, day)
            return 0

        manager._claim_ledger = stale_claim
        with pytest.raises(ConflictError):
            manager.create(request(room_id, time(11, 0), time(12, 0)), seeded["owner"])

        assert db_session.scalar(select(func.count(Booking.id))) == 1

    def test_concurrent_creates_have_one_winner(self, seeded):
        room_id = seeded["room"].id
        user_ids = [seeded["owner"].id, seeded["other"].id]
        barrier = threading.Barrier(2)
        outcomes = []

        def attempt(user_id):
            session = SessionLocal()
            try:
                manager = manager_for(session)
                user = session.get(User, user_id)
                barrier.wait()
                manager.create(request(room_id, time(9, 0), time(10, 0)), user)
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")
            finally:
                session.close()

        threads = [threading.Thread(target=attempt, args=(user_id,)) for user_id in user_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["conflict", "ok"]
        with SessionLocal() as session:
            assert session.scalar(select(func.count(Booking.id))) == 1


class TestRequestToken:
    TOKEN = "tok-0001-aaaa"

    def test_replay_returns_the_stored_booking(self, db_session, seeded):
        manager = manager_for(db_session)
        first = manager.create(request(seeded["room"].id, time(9, 0), time(10, 0), request_token=self.TOKEN), seeded["owner"])

        again = manager.create(request(seeded["room"].id, time(9, 0), time(10, 0), request_token=self.TOKEN), seeded["owner"])

        assert again.id == first.id
        assert db_session.scalar(select(func.count(Booking.id))) == 1

    @pytest.mark.parametrize("changes", [{"purpose": "Exam"}, {"notes": "Projector please"}])
    def test_replay_with_different_details_conflicts(self, db_session, seeded, changes):
        manager = manager_for(db_session)
        room_id = seeded["room"].id
        manager.create(request(room_id, time(9, 0), time(10, 0), request_token=self.TOKEN), seeded["owner"])

        with pytest.raises(ConflictError):
            manager.create(replace(request(room_id, time(9, 0), time(10, 0), request_token=self.TOKEN), **changes), seeded["owner"])

    def test_replay_of_cancelled_booking_conflicts(self, db_session, seeded):
        manager = manager_for(db_session)
        booking = manager.create(
            request(seeded["room"].id, time(9, 0), time(10, 0), request_token=self.TOKEN), seeded["owner"]
        )
        manager.cancel(booking.id, seeded["owner"])

        with pytest.raises(ConflictError) as excinfo:
            manager.create(request(seeded["room"].id, time(9, 0), time(10, 0), request_token=self.TOKEN), seeded["owner"])

        assert "cancelled" in str(excinfo.value)

    def test_token_of_another_user_conflicts(self, db_session, seeded):
        manager = manager_for(db_session)
        manager.create(request(seeded["room"].id, time(9, 0), time(10, 0), request_token=self.TOKEN), seeded["owner"])

        with pytest.raises(ConflictError):
            manager.create(request(seeded["room"].id, time(9, 0), time(10, 0), request_token=self.TOKEN), seeded["other"])


class TestCreateMany:
    def test_commits_one_booking_per_slot(self, db_session, seeded):
        created = manager_for(db_session).create_many(
            seeded["room"].id, DAY, [time(14, 0), time(9, 0)], "Tutorial", seeded["owner"], notes="Bring laptops"
        )

        assert [(booking.start_time, booking.end_time) for booking in created] == [
            (time(9, 0), time(9, 30)),
            (time(14, 0), time(14, 30)),
        ]
        assert all(booking.notes == "Bring laptops" for booking in created)

    def test_one_taken_slot_rejects_the_whole_selection(self, db_session, seeded):
        manager = manager_for(db_session)
        room_id = seeded["room"].id
        manager.create(request(room_id, time(10, 0), time(10, 30)), seeded["other"])

        with pytest.raises(ConflictError) as excinfo:
            manager.create_many(room_id, DAY, [time(9, 0), time(9, 30), time(10, 0)], "Tutorial", seeded["owner"])

        assert "10:00" in str(excinfo.value)
        assert db_session.scalar(select(func.count(Booking.id))) == 1

    def test_invalid_slot_rejects_the_whole_selection(self, db_session, seeded):
        with pytest.raises(ValidationError) as excinfo:
            manager_for(db_session).create_many(
                seeded["room"].id, DAY, [time(19, 30), time(20, 0)], "Tutorial", seeded["owner"]
            )

        assert excinfo.value.rule == "outside_booking_window"
        assert db_session.scalar(select(func.count(Booking.id))) == 0

    @pytest.mark.parametrize("slots,rule", [([], "slots_required"), ([time(9, 0), time(9, 0)], "duplicate_slots")])
    def test_selection_shape(self, db_session, seeded, slots, rule):
        with pytest.raises(ValidationError) as excinfo:
            manager_for(db_session).create_many(seeded["room"].id, DAY, slots, "Tutorial", seeded["owner"])
        assert excinfo.value.rule == rule


class TestCancel:
    def test_owner_cancels(self, db_session, seeded):
        manager = manager_for(db_session)
        booking = manager.create(request(seeded["room"].id, time(9, 0), time(10, 0)), seeded["owner"])

        cancelled = manager.cancel(booking.id, seeded["owner"])

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancelled_at is not None

    def test_cancel_rules(self, db_session, seeded):
        manager = manager_for(db_session)
        booking = manager.create(request(seeded["room"].id, time(9, 0), time(10, 0)), seeded["owner"])

        with pytest.raises(ForbiddenError):
            manager.cancel(booking.id, seeded["other"])
        manager.cancel(booking.id, seeded["admin"])
        with pytest.raises(InvalidStateError):
            manager.cancel(booking.id, seeded["owner"])
        with pytest.raises(NotFoundError):
            manager.cancel(9999, seeded["owner"])


class TestCompleteElapsed:
    def test_only_finished_bookings_complete(self, db_session, seeded):
        manager = manager_for(db_session)
        room_id = seeded["room"].id
        first = manager.create(request(room_id, time(8, 0), time(9, 0)), seeded["owner"])
        second = manager.create(request(room_id, time(9, 0), time(10, 0)), seeded["owner"])
        later = BookingTransactionManager(
            db_session, policy=SchedulingPolicy(), clock=FixedClock(datetime(2030, 1, 7, 9, 0))
        )

        assert later.complete_elapsed() == 1
        db_session.refresh(first)
        db_session.refresh(second)
        assert first.status == BookingStatus.COMPLETED
        assert second.status == BookingStatus.SCHEDULED
