"""Booking writes: single create, multi-slot create, cancellation, completion."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date, time
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from common.models import Booking, BookingStatus, RoomDayLedger, User

from .clock import Clock, SystemClock
from .errors import ConflictError, ForbiddenError, InvalidStateError, ValidationError
from .policy import SchedulingPolicy, get_scheduling_policy
from .repository import BookingRepository
from .slots import from_minutes, ranges_overlap, to_minutes
from .validation import BookingRequest, BookingValidator

logger = logging.getLogger(__name__)


class RoomDayLocks:
    """Process-local mutex per (room, date); writes to other keys never wait."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[int, date], threading.Lock] = {}

    @contextmanager
    def hold(self, room_id: int, day: date) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault((room_id, day), threading.Lock())
        with lock:
            yield


room_day_locks = RoomDayLocks()


def _hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def _overlapping(bookings: Iterable[Booking], start: time, end: time) -> List[Booking]:
    return [booking for booking in bookings if ranges_overlap(start, end, booking.start_time, booking.end_time)]


class BookingTransactionManager:
    """
    Commits bookings so that no two scheduled bookings of a room overlap on a date.

    Inserts for one (room, date) are serialized twice: ``room_day_locks`` covers
    threads of this process and the ``RoomDayLedger`` version compare-and-swap
    covers other processes sharing the database. The overlap check runs again
    after both are held, so a request that passed validation earlier can still
    lose with ``ConflictError``.
    """

    def __init__(
        self,
        session: Session,
        policy: Optional[SchedulingPolicy] = None,
        clock: Optional[Clock] = None,
        locks: RoomDayLocks = room_day_locks,
    ) -> None:
        self.session = session
        self.policy = policy or get_scheduling_policy()
        self.clock = clock or SystemClock(self.policy.timezone)
        self.locks = locks
        self.repository = BookingRepository(session)
        self.validator = BookingValidator(self.policy, self.clock)

    def create(self, request: BookingRequest, user: User) -> Booking:
        if request.request_token:
            existing = self.repository.find_by_request_token(request.request_token)
            if existing is not None:
                return self._replay(existing, request, user)

        self.validator.validate(request)
        room = self.repository.get_room(request.room_id)
        self.validator.check_room(request, room, [])

        with self._room_day(room.id, request.booking_date) as bookings:
            clashes = _overlapping(bookings, request.start_time, request.end_time)
            if clashes:
                raise ConflictError(
                    f"Room {room.room_number} is already booked {_hhmm(request.start_time)}-"
                    f"{_hhmm(request.end_time)} on {request.booking_date.isoformat()} "
                    f"(booking {clashes[0].id})"
                )
            booking = self._new_booking(request, user)
            self.session.add(booking)

        self.session.refresh(booking)
        logger.info(
            "booking %s committed: room=%s date=%s %s-%s user=%s",
            booking.id,
            room.id,
            request.booking_date.isoformat(),
            _hhmm(request.start_time),
            _hhmm(request.end_time),
            user.id,
        )
        return booking

    def create_many(
        self,
        room_id: int,
        day: date,
        slot_starts: Iterable[time],
        purpose: str,
        user: User,
        notes: Optional[str] = None,
    ) -> List[Booking]:
        """
        Book several slots of one room and date, one booking per slot.

        All slots commit in a single transaction or none do.
        """
        starts = list(slot_starts)
        if not starts:
            raise ValidationError("slots_required", "Select at least one slot")
        if len(set(starts)) != len(starts):
            raise ValidationError("duplicate_slots", "The same slot was selected more than once")
        starts.sort()

        requests = [
            BookingRequest(
                room_id=room_id,
                booking_date=day,
                start_time=start,
                end_time=self._slot_end(start),
                purpose=purpose,
                notes=notes,
            )
            for start in starts
        ]
        for request in requests:
            self.validator.validate(request)
        room = self.repository.get_room(room_id)
        for request in requests:
            self.validator.check_room(request, room, [])

        with self._room_day(room.id, day) as bookings:
            taken = [request.start_time for request in requests if _overlapping(bookings, request.start_time, request.end_time)]
            if taken:
                raise ConflictError(
                    f"Room {room.room_number} slots already booked on {day.isoformat()}: "
                    + ", ".join(_hhmm(slot) for slot in taken)
                )
            created = [self._new_booking(request, user) for request in requests]
            self.session.add_all(created)

        for booking in created:
            self.session.refresh(booking)
        logger.info(
            "multi-slot booking committed: room=%s date=%s slots=%s user=%s ids=%s",
            room.id,
            day.isoformat(),
            ",".join(_hhmm(slot) for slot in starts),
            user.id,
            [booking.id for booking in created],
        )
        return created

    def cancel(self, booking_id: int, user: User) -> Booking:
        booking = self.repository.get_booking(booking_id)
        if booking.user_id != user.id and not user.is_elevated:
            raise ForbiddenError("Only the owner or an administrator can cancel this booking")
        if booking.status != BookingStatus.SCHEDULED:
            raise InvalidStateError(f"Booking {booking.id} is already {booking.status.value}")
        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = self.clock.now()
        self.session.commit()
        self.session.refresh(booking)
        logger.info("booking %s cancelled by user=%s", booking.id, user.id)
        return booking

    def complete_elapsed(self) -> int:
        """Mark scheduled bookings whose end has passed as completed."""
        now = self.clock.now()
        today, moment = now.date(), now.time()
        query = select(Booking).where(
            Booking.status == BookingStatus.SCHEDULED,
            or_(
                Booking.booking_date < today,
                and_(Booking.booking_date == today, Booking.end_time <= moment),
            ),
        )
        elapsed = list(self.session.scalars(query))
        for booking in elapsed:
            booking.status = BookingStatus.COMPLETED
        self.session.commit()
        if elapsed:
            logger.info("marked %d elapsed bookings completed", len(elapsed))
        return len(elapsed)

    @contextmanager
    def _room_day(self, room_id: int, day: date) -> Iterator[List[Booking]]:
        """
        Hold the (room, date) write slot and yield its scheduled bookings.

        Whatever the body adds to the session is committed on exit together with
        the ledger version bump; any error rolls everything back.
        """
        with self.locks.hold(room_id, day):
            try:
                seen = self._claim_ledger(room_id, day)
                yield self.repository.list_scheduled_bookings(room_id, day)
                bumped = self.session.execute(
                    update(RoomDayLedger)
                    .where(
                        RoomDayLedger.room_id == room_id,
                        RoomDayLedger.booking_date == day,
                        RoomDayLedger.version == seen,
                    )
                    .values(version=seen + 1)
                    .execution_options(synchronize_session=False)
                )
                if bumped.rowcount != 1:
                    raise ConflictError(
                        f"Another booking for room {room_id} on {day.isoformat()} was committed concurrently"
                    )
                self.session.commit()
            except IntegrityError as exc:
                self.session.rollback()
                logger.warning("booking insert for room=%s date=%s lost a race: %s", room_id, day, exc.orig)
                raise ConflictError(
                    f"Another booking for room {room_id} on {day.isoformat()} was committed concurrently"
                ) from exc
            except Exception:
                self.session.rollback()
                raise

    def _claim_ledger(self, room_id: int, day: date) -> int:
        ledger = self.session.scalars(
            select(RoomDayLedger)
            .where(RoomDayLedger.room_id == room_id, RoomDayLedger.booking_date == day)
            .with_for_update()
        ).first()
        if ledger is None:
            ledger = RoomDayLedger(room_id=room_id, booking_date=day, version=0)
            self.session.add(ledger)
            self.session.flush()
        return ledger.version

    def _new_booking(self, request: BookingRequest, user: User) -> Booking:
        return Booking(
            room_id=request.room_id,
            user_id=user.id,
            booking_date=request.booking_date,
            start_time=request.start_time,
            end_time=request.end_time,
            purpose=request.purpose.strip(),
            notes=request.notes,
            status=BookingStatus.SCHEDULED,
            request_token=request.request_token,
            created_at=self.clock.now(),
        )

    def _slot_end(self, start: time) -> time:
        minutes = to_minutes(start) + self.policy.slot_minutes
        if minutes >= 24 * 60:
            raise ValidationError(
                "outside_booking_window",
                f"Booking time must be between {_hhmm(self.policy.window_open)} and {_hhmm(self.policy.window_close)}",
            )
        return from_minutes(minutes)

    def _replay(self, existing: Booking, request: BookingRequest, user: User) -> Booking:
        same_request = (
            existing.user_id == user.id
            and existing.room_id == request.room_id
            and existing.booking_date == request.booking_date
            and existing.start_time == request.start_time
            and existing.end_time == request.end_time
            and existing.purpose == (request.purpose or "").strip()
            and existing.notes == request.notes
        )
        if not same_request:
            raise ConflictError("Request token was already used for a different booking")
        if existing.status != BookingStatus.SCHEDULED:
            raise ConflictError(
                f"Request token belongs to booking {existing.id}, which is already {existing.status.value}"
            )
        logger.info("replayed booking %s for request token %s", existing.id, request.request_token)
        return existing
