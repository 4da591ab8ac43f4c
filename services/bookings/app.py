from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware

from common.config import get_settings
from common.database import Base, engine
from common.dependencies import get_current_user, get_repository, get_transaction_manager, require_elevated
from common.errors import add_scheduling_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Booking, BookingStatus, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import BookingCreate, BookingRead, CompletionResult, MultiSlotBookingCreate
from scheduling.errors import ForbiddenError
from scheduling.repository import BookingRepository
from scheduling.transactions import BookingTransactionManager
from scheduling.validation import BookingRequest

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    add_scheduling_error_handlers(fastapi_app, "bookings")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.booking_rate_limit)
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_user),
    manager: BookingTransactionManager = Depends(get_transaction_manager),
) -> Booking:
    return manager.create(BookingRequest(**booking_in.model_dump()), current_user)


@app.post("/bookings/multi", response_model=List[BookingRead], status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.booking_rate_limit)
def create_multi_slot_booking(
    request: Request,
    booking_in: MultiSlotBookingCreate,
    current_user: User = Depends(get_current_user),
    manager: BookingTransactionManager = Depends(get_transaction_manager),
) -> List[Booking]:
    return manager.create_many(
        booking_in.room_id,
        booking_in.booking_date,
        booking_in.slot_times,
        booking_in.purpose,
        current_user,
        notes=booking_in.notes,
    )


@app.get("/bookings", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_bookings(
    request: Request,
    room_id: Optional[int] = None,
    user_id: Optional[int] = None,
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    _: User = Depends(require_elevated),
    repository: BookingRepository = Depends(get_repository),
) -> List[Booking]:
    return repository.list_bookings(room_id=room_id, user_id=user_id, status=status_filter, skip=skip, limit=limit)


@app.get("/bookings/me", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_my_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_user),
    repository: BookingRepository = Depends(get_repository),
) -> List[Booking]:
    return repository.list_user_bookings(current_user.id, status=status_filter)


@app.post("/bookings/complete-elapsed", response_model=CompletionResult)
@limiter.limit("10/minute")
def complete_elapsed_bookings(
    request: Request,
    _: User = Depends(require_elevated),
    manager: BookingTransactionManager = Depends(get_transaction_manager),
) -> CompletionResult:
    return CompletionResult(completed=manager.complete_elapsed())


@app.get("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    repository: BookingRepository = Depends(get_repository),
) -> Booking:
    booking = repository.get_booking(booking_id)
    if booking.user_id != current_user.id and not current_user.is_elevated:
        raise ForbiddenError("Access denied")
    return booking


@app.put("/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit(settings.booking_rate_limit)
def cancel_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    manager: BookingTransactionManager = Depends(get_transaction_manager),
) -> Booking:
    return manager.cancel(booking_id, current_user)
