from contextlib import asynccontextmanager
from datetime import date, time
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.orm import Session

from common.cache import ListingCache
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import get_repository, require_elevated
from common.errors import add_scheduling_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Booking, BookingStatus, Room, RoomStatus, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import DayScheduleRead, RoomCreate, RoomRead, RoomUpdate, WeeklyScheduleRead
from scheduling.availability import find_available_rooms
from scheduling.clock import Clock, get_clock
from scheduling.errors import InvalidStateError
from scheduling.policy import SchedulingPolicy, get_scheduling_policy
from scheduling.repository import BookingRepository
from scheduling.slots import DaySchedule, WeeklySchedule, check_operating_window
from scheduling.weekly import build_day_schedule, build_offset_schedule, build_weekly_schedule

settings = get_settings()
room_list_cache: ListingCache[List[RoomRead]] = ListingCache(ttl=settings.room_cache_ttl)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Rooms Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "rooms")
    add_scheduling_error_handlers(fastapi_app, "rooms")
    return fastapi_app


app = create_app()


def _get_room_or_404(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


def _upcoming_bookings(db: Session, room_id: int, today: date) -> List[Booking]:
    return list(
        db.scalars(
            select(Booking).where(
                Booking.room_id == room_id,
                Booking.status == BookingStatus.SCHEDULED,
                Booking.booking_date >= today,
            )
        )
    )


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "rooms"}


@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_room(
    request: Request,
    room_in: RoomCreate,
    _: User = Depends(require_elevated),
    db: Session = Depends(get_db),
    policy: SchedulingPolicy = Depends(get_scheduling_policy),
) -> Room:
    check_operating_window(room_in.operating_start, room_in.operating_end, policy.slot_minutes)
    if db.scalars(select(Room).where(Room.room_number == room_in.room_number)).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Room number already exists")
    room = Room(**room_in.model_dump())
    db.add(room)
    db.commit()
    db.refresh(room)
    room_list_cache.invalidate()
    return room


@app.get("/rooms", response_model=List[RoomRead])
@circuit(failure_threshold=5, recovery_timeout=60)
def list_rooms(
    request: Request,
    status_filter: Optional[RoomStatus] = Query(default=None, alias="status"),
    capacity: Optional[int] = Query(default=None, ge=1),
    purpose: Optional[str] = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    repository: BookingRepository = Depends(get_repository),
) -> List[RoomRead]:
    cache_key = ListingCache.key_for(
        "rooms",
        status=status_filter.value if status_filter else None,
        capacity=capacity,
        purpose=purpose,
        skip=skip,
        limit=limit,
    )
    cached = room_list_cache.get(cache_key)
    if cached is not None:
        return cached

    rooms = repository.list_rooms(
        status=status_filter,
        min_capacity=capacity,
        purpose=purpose,
        skip=skip,
        limit=limit,
    )
    listing = [RoomRead.model_validate(room) for room in rooms]
    room_list_cache.set(cache_key, listing)
    return listing


@app.get("/rooms/available/search", response_model=List[RoomRead])
@limiter.limit("40/minute")
def search_available_rooms(
    request: Request,
    booking_date: date = Query(..., alias="date"),
    start_time: time = Query(...),
    end_time: time = Query(...),
    purpose: Optional[str] = None,
    capacity: Optional[int] = Query(default=None, ge=1),
    repository: BookingRepository = Depends(get_repository),
    policy: SchedulingPolicy = Depends(get_scheduling_policy),
) -> List[Room]:
    return find_available_rooms(
        repository,
        booking_date,
        start_time,
        end_time,
        purpose=purpose,
        min_capacity=capacity,
        policy=policy,
    )


@app.get("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("60/minute")
def get_room(request: Request, room_id: int, db: Session = Depends(get_db)) -> Room:
    return _get_room_or_404(db, room_id)


@app.put("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("15/minute")
def update_room(
    request: Request,
    room_id: int,
    room_update: RoomUpdate,
    _: User = Depends(require_elevated),
    db: Session = Depends(get_db),
    policy: SchedulingPolicy = Depends(get_scheduling_policy),
    clock: Clock = Depends(get_clock),
) -> Room:
    room = _get_room_or_404(db, room_id)
    update_data = room_update.model_dump(exclude_unset=True)

    opening = update_data.get("operating_start", room.operating_start)
    closing = update_data.get("operating_end", room.operating_end)
    if (opening, closing) != (room.operating_start, room.operating_end):
        check_operating_window(opening, closing, policy.slot_minutes)
        stranded = [
            booking
            for booking in _upcoming_bookings(db, room.id, clock.today())
            if booking.start_time < opening or booking.end_time > closing
        ]
        if stranded:
            raise InvalidStateError(
                f"Room {room.room_number} has {len(stranded)} scheduled booking(s) outside the new operating hours"
            )

    new_number = update_data.get("room_number")
    if new_number and new_number != room.room_number:
        if db.scalars(select(Room).where(Room.room_number == new_number)).first():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Room number already exists")

    for key, value in update_data.items():
        setattr(room, key, value)
    db.commit()
    db.refresh(room)
    room_list_cache.invalidate()
    return room


@app.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_room(
    request: Request,
    room_id: int,
    _: User = Depends(require_elevated),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> None:
    room = _get_room_or_404(db, room_id)
    if _upcoming_bookings(db, room.id, clock.today()):
        raise InvalidStateError(f"Room {room.room_number} still has scheduled bookings")
    db.delete(room)
    db.commit()
    room_list_cache.invalidate()


@app.get("/rooms/{room_id}/slots", response_model=DayScheduleRead)
@limiter.limit("60/minute")
def room_day_slots(
    request: Request,
    room_id: int,
    booking_date: date = Query(..., alias="date"),
    repository: BookingRepository = Depends(get_repository),
    policy: SchedulingPolicy = Depends(get_scheduling_policy),
) -> DaySchedule:
    return build_day_schedule(repository, room_id, booking_date, policy)


@app.get("/rooms/{room_id}/schedule/day", response_model=DayScheduleRead)
@limiter.limit("60/minute")
def room_offset_schedule(
    request: Request,
    room_id: int,
    day_offset: int = Query(default=0),
    repository: BookingRepository = Depends(get_repository),
    policy: SchedulingPolicy = Depends(get_scheduling_policy),
    clock: Clock = Depends(get_clock),
) -> DaySchedule:
    return build_offset_schedule(repository, room_id, day_offset, clock, policy)


@app.get("/rooms/{room_id}/schedule/week", response_model=WeeklyScheduleRead)
@limiter.limit("30/minute")
def room_weekly_schedule(
    request: Request,
    room_id: int,
    repository: BookingRepository = Depends(get_repository),
    policy: SchedulingPolicy = Depends(get_scheduling_policy),
    clock: Clock = Depends(get_clock),
) -> WeeklySchedule:
    return build_weekly_schedule(repository, room_id, clock, policy)
