"""Persistence collaborator for the scheduling core."""
from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from common.models import Booking, BookingStatus, Room, RoomStatus

from .errors import NotFoundError


class BookingRepository:
    """Read side of the room/booking tables. Writes live in ``transactions``."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_room(self, room_id: int) -> Room:
        room = self.session.get(Room, room_id)
        if room is None:
            raise NotFoundError(f"Room {room_id} not found")
        return room

    def list_rooms(
        self,
        status: Optional[RoomStatus] = None,
        min_capacity: Optional[int] = None,
        purpose: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = 100,
    ) -> List[Room]:
        query = select(Room)
        if status is not None:
            query = query.where(Room.status == status)
        if min_capacity:
            query = query.where(Room.capacity >= min_capacity)
        if purpose:
            query = query.where(Room.purpose.ilike(f"%{purpose.strip()}%"))
        query = query.order_by(Room.room_number).offset(skip)
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.scalars(query))

    def list_scheduled_bookings(self, room_id: int, day: date) -> List[Booking]:
        query = (
            select(Booking)
            .where(
                Booking.room_id == room_id,
                Booking.booking_date == day,
                Booking.status == BookingStatus.SCHEDULED,
            )
            .order_by(Booking.start_time)
        )
        return list(self.session.scalars(query))

    def list_scheduled_bookings_for_rooms(self, room_ids: Iterable[int], day: date) -> dict[int, List[Booking]]:
        room_ids = list(room_ids)
        grouped: dict[int, List[Booking]] = {room_id: [] for room_id in room_ids}
        if not room_ids:
            return grouped
        query = (
            select(Booking)
            .where(
                Booking.room_id.in_(room_ids),
                Booking.booking_date == day,
                Booking.status == BookingStatus.SCHEDULED,
            )
            .order_by(Booking.start_time)
        )
        for booking in self.session.scalars(query):
            grouped[booking.room_id].append(booking)
        return grouped

    def list_user_bookings(self, user_id: int, status: Optional[BookingStatus] = None) -> List[Booking]:
        query = select(Booking).where(Booking.user_id == user_id)
        if status is not None:
            query = query.where(Booking.status == status)
        query = query.order_by(Booking.booking_date.desc(), Booking.start_time.desc())
        return list(self.session.scalars(query))

    def list_bookings(
        self,
        room_id: Optional[int] = None,
        user_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Booking]:
        query = select(Booking)
        if room_id is not None:
            query = query.where(Booking.room_id == room_id)
        if user_id is not None:
            query = query.where(Booking.user_id == user_id)
        if status is not None:
            query = query.where(Booking.status == status)
        query = query.order_by(Booking.booking_date.desc(), Booking.start_time.desc()).offset(skip).limit(limit)
        return list(self.session.scalars(query))

    def get_booking(self, booking_id: int) -> Booking:
        booking = self.session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def find_by_request_token(self, token: str) -> Optional[Booking]:
        return self.session.scalars(select(Booking).where(Booking.request_token == token)).first()
