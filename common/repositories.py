"""Storage boundary for slots and bookings.

The engine only talks to the two protocols below. The SQLAlchemy implementations
share one ``Session`` so that a command's writes land in a single transaction.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from .clock import utcnow
from .models import Booking, BookingStatus, ParkingSlot, SlotStatus, SlotType, User


class SlotRepository(Protocol):
    def get(self, slot_id: str) -> Optional[ParkingSlot]: ...

    def get_by_name(self, name: str) -> Optional[ParkingSlot]: ...

    def list(self, floor: Optional[int] = None, slot_type: Optional[SlotType] = None) -> List[ParkingSlot]: ...

    def add(self, slot: ParkingSlot) -> ParkingSlot: ...

    def delete_if_unchanged(self, slot: ParkingSlot) -> bool: ...

    def compare_and_swap(self, slot: ParkingSlot, status: SlotStatus) -> bool: ...

    def latest_update(self) -> Optional[datetime]: ...


class BookingRepository(Protocol):
    def get(self, booking_id: str) -> Optional[Booking]: ...

    def add(self, booking: Booking) -> Booking: ...

    def list(self, status: Optional[BookingStatus] = None, search: Optional[str] = None) -> List[Booking]: ...

    def list_for_user(self, user_id: str) -> List[Booking]: ...

    def active_in_range(self, slot_id: str, start: datetime, end: datetime) -> List[Booking]: ...

    def has_active(self, slot_id: str) -> bool: ...

    def active_containing(self, instant: datetime) -> List[Booking]: ...

    def expired_active(self, now: datetime) -> List[Booking]: ...

    def popularity(self, limit: int) -> List[Tuple[str, str, int]]: ...

    def latest_update(self) -> Optional[datetime]: ...


class Store(Protocol):
    slots: SlotRepository
    bookings: BookingRepository

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class SqlAlchemySlotRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, slot_id: str) -> Optional[ParkingSlot]:
        return self.session.get(ParkingSlot, slot_id)

    def get_by_name(self, name: str) -> Optional[ParkingSlot]:
        return self.session.scalars(select(ParkingSlot).where(ParkingSlot.name == name)).first()

    def list(self, floor: Optional[int] = None, slot_type: Optional[SlotType] = None) -> List[ParkingSlot]:
        query = select(ParkingSlot)
        if floor is not None:
            query = query.where(ParkingSlot.floor == floor)
        if slot_type is not None:
            query = query.where(ParkingSlot.type == slot_type)
        return list(self.session.scalars(query.order_by(ParkingSlot.floor, ParkingSlot.name)))

    def add(self, slot: ParkingSlot) -> ParkingSlot:
        self.session.add(slot)
        self.session.flush()
        return slot

    def delete_if_unchanged(self, slot: ParkingSlot) -> bool:
        """Delete the slot only if its version still matches the one read.

        Historical bookings keep their ``slot_name``/``slot_type`` copies and lose the reference.
        """

        result = self.session.execute(
            delete(ParkingSlot)
            .where(ParkingSlot.id == slot.id, ParkingSlot.version == slot.version)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.session.execute(update(Booking).where(Booking.slot_id == slot.id).values(slot_id=None))
        self.session.expunge(slot)
        return True

    def compare_and_swap(self, slot: ParkingSlot, status: SlotStatus) -> bool:
        """Set ``status`` and bump the version only if nobody else wrote the slot since it was read."""

        result = self.session.execute(
            update(ParkingSlot)
            .where(ParkingSlot.id == slot.id, ParkingSlot.version == slot.version)
            .values(status=status, version=ParkingSlot.version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.session.expire(slot, ["status", "version", "updated_at"])
        return True

    def latest_update(self) -> Optional[datetime]:
        return self.session.scalar(select(func.max(ParkingSlot.updated_at)))


class SqlAlchemyBookingRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _query(self):
        return select(Booking).options(selectinload(Booking.user))

    def get(self, booking_id: str) -> Optional[Booking]:
        return self.session.get(Booking, booking_id)

    def add(self, booking: Booking) -> Booking:
        self.session.add(booking)
        self.session.flush()
        return booking

    def list(self, status: Optional[BookingStatus] = None, search: Optional[str] = None) -> List[Booking]:
        query = self._query()
        if status is not None:
            query = query.where(Booking.status == status)
        if search:
            pattern = f"%{search}%"
            query = query.join(User, Booking.user_id == User.id).where(
                or_(User.name.ilike(pattern), Booking.slot_name.ilike(pattern))
            )
        return list(self.session.scalars(query.order_by(Booking.start_time.desc())))

    def list_for_user(self, user_id: str) -> List[Booking]:
        query = self._query().where(Booking.user_id == user_id).order_by(Booking.start_time.desc())
        return list(self.session.scalars(query))

    def active_in_range(self, slot_id: str, start: datetime, end: datetime) -> List[Booking]:
        """Active bookings on the slot that may touch ``[start, end]``; a superset of the true overlaps."""

        query = self._query().where(
            Booking.slot_id == slot_id,
            Booking.status == BookingStatus.ACTIVE,
            Booking.start_time <= end,
            Booking.end_time >= start,
        )
        return list(self.session.scalars(query.order_by(Booking.start_time)))

    def has_active(self, slot_id: str) -> bool:
        return bool(
            self.session.scalar(
                select(exists().where(Booking.slot_id == slot_id, Booking.status == BookingStatus.ACTIVE))
            )
        )

    def active_containing(self, instant: datetime) -> List[Booking]:
        query = self._query().where(
            Booking.status == BookingStatus.ACTIVE,
            Booking.start_time <= instant,
            Booking.end_time >= instant,
        )
        return list(self.session.scalars(query))

    def expired_active(self, now: datetime) -> List[Booking]:
        query = self._query().where(Booking.status == BookingStatus.ACTIVE, Booking.end_time < now)
        return list(self.session.scalars(query))

    def popularity(self, limit: int) -> List[Tuple[str, str, int]]:
        rows = self.session.execute(
            select(ParkingSlot.id, ParkingSlot.name, func.count(Booking.id).label("booking_count"))
            .outerjoin(Booking, Booking.slot_id == ParkingSlot.id)
            .group_by(ParkingSlot.id, ParkingSlot.name)
            .order_by(func.count(Booking.id).desc(), ParkingSlot.name)
            .limit(limit)
        )
        return [(slot_id, name, count) for slot_id, name, count in rows]

    def latest_update(self) -> Optional[datetime]:
        return self.session.scalar(select(func.max(Booking.updated_at)))


class SqlAlchemyStore:
    """Both repositories over one session, committed or rolled back together."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.slots = SqlAlchemySlotRepository(session)
        self.bookings = SqlAlchemyBookingRepository(session)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

