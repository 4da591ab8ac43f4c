"""HTTP client for the bookings API.

``book_slots`` is the path for callers that can only issue one create per
slot: it cancels what it already booked when a later slot fails, looks up a
slot whose create response was lost, and reports ``PartialFailureError`` when
that cleanup cannot finish.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from .errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PartialFailureError,
    SchedulingError,
    ValidationError,
)
from .slots import slot_end

logger = logging.getLogger(__name__)


def _hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def _raise_for_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    detail = payload.get("detail") or response.text or response.reason_phrase
    if not isinstance(detail, str):
        detail = str(detail)
    error = payload.get("error")
    status = response.status_code
    if status == 422 or error == "validation_error":
        raise ValidationError(payload.get("rule") or "request_invalid", detail)
    if status == 404:
        raise NotFoundError(detail)
    if status == 403:
        raise ForbiddenError(detail)
    if error == "invalid_state":
        raise InvalidStateError(detail)
    if status == 409:
        raise ConflictError(detail)
    raise SchedulingError(f"Booking API answered {status}: {detail}")


class PortalBookingClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "PortalBookingClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def get_day_schedule(self, room_id: int, day: date) -> Dict[str, Any]:
        response = self._client.get(f"/rooms/{room_id}/slots", params={"date": day.isoformat()})
        _raise_for_error(response)
        return response.json()

    def create_booking(
        self,
        room_id: int,
        day: date,
        start: time,
        end: time,
        purpose: str,
        notes: Optional[str] = None,
        request_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create one booking.

        A transport failure leaves the outcome unknown, so the request is sent
        once more with the same token; the server answers a replay with the
        booking it already stored instead of creating a second one.
        """
        body = {
            "room_id": room_id,
            "booking_date": day.isoformat(),
            "start_time": _hhmm(start),
            "end_time": _hhmm(end),
            "purpose": purpose,
            "notes": notes,
            "request_token": request_token or uuid.uuid4().hex,
        }
        try:
            response = self._client.post("/bookings", json=body)
        except httpx.TransportError as exc:
            logger.warning("create booking for room=%s %s timed out (%s); replaying", room_id, _hhmm(start), exc)
            response = self._client.post("/bookings", json=body)
        _raise_for_error(response)
        return response.json()

    def cancel_booking(self, booking_id: int) -> Dict[str, Any]:
        response = self._client.put(f"/bookings/{booking_id}/cancel")
        _raise_for_error(response)
        return response.json()

    def get_booking(self, booking_id: int) -> Dict[str, Any]:
        response = self._client.get(f"/bookings/{booking_id}")
        _raise_for_error(response)
        return response.json()

    def book_slots(
        self,
        room_id: int,
        day: date,
        slot_starts: Iterable[time],
        purpose: str,
        notes: Optional[str] = None,
        slot_minutes: int = 30,
    ) -> List[Dict[str, Any]]:
        """Book each slot separately; undo the committed ones if any slot fails."""
        starts = sorted(set(slot_starts))
        committed: List[Dict[str, Any]] = []
        committed_slots: List[time] = []
        for start in starts:
            token = uuid.uuid4().hex
            try:
                booking = self.create_booking(
                    room_id, day, start, slot_end(start, slot_minutes), purpose, notes, request_token=token
                )
            except (SchedulingError, httpx.HTTPError) as exc:
                logger.warning(
                    "slot %s of room=%s on %s failed (%s); compensating %d committed slots",
                    _hhmm(start),
                    room_id,
                    day.isoformat(),
                    exc,
                    len(committed),
                )
                unconfirmed: List[time] = []
                if isinstance(exc, httpx.TransportError):
                    orphan, confirmed = self._reconcile(room_id, day, start, token)
                    if orphan is not None:
                        committed.append(orphan)
                        committed_slots.append(start)
                    elif not confirmed:
                        unconfirmed.append(start)
                self._compensate(committed, committed_slots, failed=[start], cause=exc, unconfirmed=unconfirmed)
                raise
            committed.append(booking)
            committed_slots.append(start)
        return committed

    def _reconcile(
        self, room_id: int, day: date, start: time, token: str
    ) -> Tuple[Optional[Dict[str, Any]], bool]:
        """
        Find out whether a create whose response was lost went through.

        Returns the booking stored under ``token`` (or None) and whether the
        slot's state could be confirmed at all.
        """
        try:
            schedule = self.get_day_schedule(room_id, day)
            slot = next(
                (item for item in schedule["slots"] if time.fromisoformat(item["slot_time"]) == start),
                None,
            )
            if slot is None or slot["is_available"] or slot.get("booking_id") is None:
                return None, True
            holder = self.get_booking(slot["booking_id"])
        except ForbiddenError:
            # held by somebody else's booking
            return None, True
        except (SchedulingError, httpx.HTTPError) as exc:
            logger.error("could not confirm slot %s of room=%s on %s: %s", _hhmm(start), room_id, day.isoformat(), exc)
            return None, False
        if holder.get("request_token") == token:
            logger.warning(
                "slot %s of room=%s was committed despite the lost response (booking %s)",
                _hhmm(start),
                room_id,
                holder["id"],
            )
            return holder, True
        return None, True

    def _compensate(
        self,
        committed: List[Dict[str, Any]],
        committed_slots: List[time],
        failed: List[time],
        cause: Exception,
        unconfirmed: Sequence[time] = (),
    ) -> None:
        uncancelled: List[time] = list(unconfirmed)
        for booking, start in zip(committed, committed_slots):
            try:
                self.cancel_booking(booking["id"])
            except (SchedulingError, httpx.HTTPError) as exc:
                logger.error("could not cancel booking %s for slot %s: %s", booking["id"], _hhmm(start), exc)
                uncancelled.append(start)
        if uncancelled:
            uncancelled.sort()
            raise PartialFailureError(
                f"Multi-slot booking failed and {len(uncancelled)} slot(s) may still be held",
                committed=committed_slots,
                failed=failed,
                uncancelled=uncancelled,
            ) from cause
