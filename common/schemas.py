"""Pydantic schemas shared across the services."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import BookingStatus, RoleEnum, RoomStatus


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserBase(BaseModel):
    name: str = Field(..., max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.STUDENT


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserRead(UserBase):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class RoomBase(BaseModel):
    room_number: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., max_length=100)
    purpose: str = Field(..., max_length=100)
    capacity: int = Field(..., gt=0)
    location: Optional[str] = Field(None, max_length=255)
    operating_start: time = time(8, 0)
    operating_end: time = time(20, 0)
    status: RoomStatus = RoomStatus.AVAILABLE
    description: Optional[str] = None


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    room_number: Optional[str] = Field(None, min_length=1, max_length=20)
    name: Optional[str] = Field(None, max_length=100)
    purpose: Optional[str] = Field(None, max_length=100)
    capacity: Optional[int] = Field(None, gt=0)
    location: Optional[str] = Field(None, max_length=255)
    operating_start: Optional[time] = None
    operating_end: Optional[time] = None
    status: Optional[RoomStatus] = None
    description: Optional[str] = None


class RoomRead(RoomBase):
    id: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookingCreate(BaseModel):
    room_id: int
    booking_date: date
    start_time: time
    end_time: time
    purpose: str = Field(..., max_length=255)
    notes: Optional[str] = None
    attendees: Optional[int] = Field(None, gt=0)
    request_token: Optional[str] = Field(None, min_length=8, max_length=64)


class MultiSlotBookingCreate(BaseModel):
    room_id: int
    booking_date: date
    slot_times: List[time] = Field(..., min_length=1)
    purpose: str = Field(..., max_length=255)
    notes: Optional[str] = None


class BookingRead(BaseModel):
    id: int
    room_id: int
    user_id: int
    booking_date: date
    start_time: time
    end_time: time
    purpose: str
    notes: Optional[str] = None
    status: BookingStatus
    created_at: datetime
    cancelled_at: Optional[datetime] = None
    request_token: Optional[str] = None

    model_config = {"from_attributes": True}


class SlotRead(BaseModel):
    slot_time: time
    end_time: time
    is_available: bool
    booking_id: Optional[int] = None

    model_config = {"from_attributes": True}


class DayScheduleRead(BaseModel):
    room_id: int
    date: date
    day_offset: Optional[int] = None
    slots: List[SlotRead]

    model_config = {"from_attributes": True}


class WeeklyScheduleRead(BaseModel):
    room_id: int
    room_number: str
    week_schedule: List[DayScheduleRead]

    model_config = {"from_attributes": True}


class CompletionResult(BaseModel):
    completed: int
