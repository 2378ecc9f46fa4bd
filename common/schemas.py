"""Pydantic schemas shared across the microservices."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .clock import to_naive_utc
from .models import BookingStatus, RoleEnum, SlotStatus, SlotType


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    role: RoleEnum = RoleEnum.USER

    @field_validator("email")
    @classmethod
    def _lowercase_email(cls, value: str) -> str:
        return value.lower()


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserRead(UserBase):
    id: str
    created_at: datetime

    model_config = {"from_attributes": True}


class SlotBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    type: SlotType = SlotType.NORMAL
    floor: int = Field(..., ge=1)


class SlotCreate(SlotBase):
    pass


class SlotUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    type: Optional[SlotType] = None
    floor: Optional[int] = Field(None, ge=1)


class SlotRead(SlotBase):
    id: str
    status: SlotStatus

    model_config = {"from_attributes": True}


class SlotStatusRead(BaseModel):
    slot_id: str
    status: SlotStatus
    booking_id: Optional[str] = None
    checked_at: datetime


class BookingCreate(BaseModel):
    slot_id: str
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def _as_naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class BookingRead(BaseModel):
    id: str
    user_id: str
    user_name: str
    slot_id: Optional[str]
    slot_name: str
    slot_type: SlotType
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class AvailabilityRead(BaseModel):
    slot_id: str
    start_time: datetime
    end_time: datetime
    available: bool


class BookingStatsRead(BaseModel):
    total_slots: int
    normal_slots: int
    electric_slots: int
    occupied_slots: int
    active_bookings: int
    today_bookings: int

    model_config = {"from_attributes": True}


class QRCodeRead(BaseModel):
    payload: dict
    data: str
    image_url: str
    image_data: str


class QRScanRequest(BaseModel):
    data: str = Field(..., min_length=2)


class QRScanResult(BaseModel):
    valid: bool
    in_effect: bool
    reason: Optional[str] = None
    booking: Optional[BookingRead] = None


class FeedbackCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    booking_id: Optional[str] = None


class FeedbackRead(BaseModel):
    id: str
    user_id: str
    user_name: str
    booking_id: Optional[str]
    rating: int
    comment: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class ChangesRead(BaseModel):
    revision: int
    slots_updated_at: Optional[datetime]
    bookings_updated_at: Optional[datetime]
