"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import DateTime, Enum as SqlEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .clock import utcnow
from .database import Base


def _new_id() -> str:
    return str(uuid4())


class RoleEnum(str, Enum):
    ADMIN = "admin"
    USER = "user"


class SlotType(str, Enum):
    NORMAL = "normal"
    ELECTRIC = "electric"


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"


class BookingStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.USER)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="user")
    feedback: Mapped[List["Feedback"]] = relationship(back_populates="user")

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.ADMIN


class ParkingSlot(Base):
    __tablename__ = "parking_slots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(50), unique=True)
    type: Mapped[SlotType] = mapped_column(SqlEnum(SlotType), default=SlotType.NORMAL, index=True)
    status: Mapped[SlotStatus] = mapped_column(SqlEnum(SlotStatus), default=SlotStatus.AVAILABLE)
    floor: Mapped[int] = mapped_column(Integer, index=True)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, index=True)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="slot")


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    slot_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("parking_slots.id", ondelete="SET NULL"), nullable=True, index=True
    )
    slot_name: Mapped[str] = mapped_column(String(50))
    slot_type: Mapped[SlotType] = mapped_column(SqlEnum(SlotType))
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    status: Mapped[BookingStatus] = mapped_column(SqlEnum(BookingStatus), default=BookingStatus.ACTIVE, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, index=True)

    user: Mapped[User] = relationship(back_populates="bookings")
    slot: Mapped[Optional[ParkingSlot]] = relationship(back_populates="bookings")

    @property
    def user_name(self) -> str:
        return self.user.name if self.user else "Unknown User"


class Feedback(Base):
    __tablename__ = "feedback"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    booking_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True
    )
    rating: Mapped[int] = mapped_column(Integer)
    comment: Mapped[Optional[str]] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    user: Mapped[User] = relationship(back_populates="feedback")

    @property
    def user_name(self) -> str:
        return self.user.name if self.user else "Unknown User"
