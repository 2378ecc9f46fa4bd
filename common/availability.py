"""Slot availability, booking and cancellation rules.

Occupancy is derived from active bookings; ``ParkingSlot.status`` is only a cached
projection that the engine rewrites whenever it touches a slot. Every command runs in
one transaction on the injected store, and the slot row is claimed with a
compare-and-swap on its version before the booking is inserted, so two concurrent
bookers of the same slot cannot both commit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from .clock import utcnow
from .errors import (
    AlreadyInactive,
    AlreadyOccupied,
    BookingNotFound,
    Forbidden,
    InvalidInterval,
    SlotInUse,
    SlotNameTaken,
    SlotNotFound,
    TimeConflict,
)
from .models import Booking, BookingStatus, ParkingSlot, SlotStatus, SlotType, User
from .notifications import ChangeBroadcaster
from .repositories import Store

logger = logging.getLogger(__name__)

SLOT_FIELDS = ("name", "type", "floor")


def is_overlapping(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Whether interval ``a`` intersects ``b``. Intervals that only touch do not overlap."""

    return (
        (b_start <= a_start < b_end)
        or (b_start < a_end <= b_end)
        or (a_start <= b_start and a_end >= b_end)
    )


def contains(start: datetime, end: datetime, instant: datetime) -> bool:
    return start <= instant <= end


def find_conflict(
    bookings: Iterable[Booking], slot_id: str, start: datetime, end: datetime
) -> Optional[Booking]:
    for booking in bookings:
        if booking.slot_id != slot_id or booking.status != BookingStatus.ACTIVE:
            continue
        if is_overlapping(start, end, booking.start_time, booking.end_time):
            return booking
    return None


@dataclass
class BookingStats:
    total_slots: int
    normal_slots: int
    electric_slots: int
    occupied_slots: int
    active_bookings: int
    today_bookings: int


class AvailabilityEngine:
    def __init__(
        self,
        store: Store,
        notifier: Optional[ChangeBroadcaster] = None,
        clock: Callable[[], datetime] = utcnow,
        reject_occupied_slots: bool = True,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.reject_occupied_slots = reject_occupied_slots

    def _publish(self, table: str, action: str, record_id: str) -> None:
        if self.notifier is not None:
            self.notifier.publish(table, action, record_id)

    @staticmethod
    def _require_admin(requester: User) -> None:
        if not requester.is_admin:
            raise Forbidden("Admins only")

    # queries

    def get_slot(self, slot_id: str) -> ParkingSlot:
        slot = self.store.slots.get(slot_id)
        if slot is None:
            raise SlotNotFound()
        return slot

    def list_slots(self, floor: Optional[int] = None, slot_type: Optional[SlotType] = None) -> List[ParkingSlot]:
        return self.store.slots.list(floor=floor, slot_type=slot_type)

    def get_available_slots(self, as_of: Optional[datetime] = None) -> List[ParkingSlot]:
        """Slots with no active booking containing ``as_of``. Does not write anything."""

        as_of = as_of or self.clock()
        current = self.store.bookings.active_containing(as_of)
        return [
            slot
            for slot in self.store.slots.list()
            if find_conflict(current, slot.id, as_of, as_of) is None
        ]

    def slot_occupancy(self, slot_id: str, as_of: Optional[datetime] = None) -> Tuple[ParkingSlot, Optional[Booking]]:
        as_of = as_of or self.clock()
        slot = self.get_slot(slot_id)
        current = self.store.bookings.active_in_range(slot_id, as_of, as_of)
        return slot, find_conflict(current, slot_id, as_of, as_of)

    def check_availability(self, slot_id: str, start: datetime, end: datetime) -> bool:
        if end <= start:
            raise InvalidInterval()
        self.get_slot(slot_id)
        candidates = self.store.bookings.active_in_range(slot_id, start, end)
        return find_conflict(candidates, slot_id, start, end) is None

    def get_booking(self, booking_id: str, requester: User) -> Booking:
        booking = self.store.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound()
        if booking.user_id != requester.id and not requester.is_admin:
            raise Forbidden("Access denied")
        return booking

    def list_user_bookings(self, user_id: str) -> List[Booking]:
        return self.store.bookings.list_for_user(user_id)

    def list_bookings(
        self, requester: User, status: Optional[BookingStatus] = None, search: Optional[str] = None
    ) -> List[Booking]:
        self._require_admin(requester)
        return self.store.bookings.list(status=status, search=search)

    def booking_stats(self, requester: User, now: Optional[datetime] = None) -> BookingStats:
        self._require_admin(requester)
        now = now or self.clock()
        slots = self.store.slots.list()
        occupied = {booking.slot_id for booking in self.store.bookings.active_containing(now)}
        active = self.store.bookings.list(status=BookingStatus.ACTIVE)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = day_start + timedelta(days=1)
        today = [b for b in self.store.bookings.list() if day_start <= b.start_time < day_end]
        return BookingStats(
            total_slots=len(slots),
            normal_slots=sum(1 for slot in slots if slot.type == SlotType.NORMAL),
            electric_slots=sum(1 for slot in slots if slot.type == SlotType.ELECTRIC),
            occupied_slots=sum(1 for slot in slots if slot.id in occupied),
            active_bookings=len(active),
            today_bookings=len(today),
        )

    def slot_popularity(self, requester: User, limit: int = 5) -> List[Dict[str, Any]]:
        self._require_admin(requester)
        return [
            {"slot_id": slot_id, "slot_name": name, "booking_count": count}
            for slot_id, name, count in self.store.bookings.popularity(limit)
        ]

    # occupancy projection

    def _occupancy_status(self, slot_id: str, now: datetime) -> SlotStatus:
        current = self.store.bookings.active_in_range(slot_id, now, now)
        if find_conflict(current, slot_id, now, now) is not None:
            return SlotStatus.OCCUPIED
        return SlotStatus.AVAILABLE

    def _reconcile(self, slot: ParkingSlot, now: datetime) -> bool:
        """Rewrite the cached status from the bookings. Returns False if a concurrent writer got there first."""

        desired = self._occupancy_status(slot.id, now)
        if slot.status == desired:
            return True
        previous = slot.status
        if not self.store.slots.compare_and_swap(slot, desired):
            return False
        logger.info("Reconciled slot %s status %s -> %s", slot.name, previous.value, desired.value)
        return True

    def reconcile_slot(self, slot_id: str, requester: User) -> ParkingSlot:
        """Recompute a slot's cached status from its bookings, for repairing drift."""

        self._require_admin(requester)
        slot = self.get_slot(slot_id)
        previous = slot.status
        try:
            if not self._reconcile(slot, self.clock()):
                raise TimeConflict("This slot was just updated, please try again")
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise
        if slot.status != previous:
            self._publish("parking_slots", "updated", slot.id)
        return slot

    # commands

    def book_slot(self, slot_id: str, start: datetime, end: datetime, requester: User) -> Booking:
        if end <= start:
            raise InvalidInterval()
        now = self.clock()
        if end <= now:
            raise InvalidInterval("Booking must end in the future")
        try:
            slot = self.get_slot(slot_id)
            if not self._reconcile(slot, now):
                raise TimeConflict("This slot was just updated, please try again")

            candidates = self.store.bookings.active_in_range(slot_id, start, end)
            conflict = find_conflict(candidates, slot_id, start, end)
            if conflict is not None:
                logger.info(
                    "Rejected booking on %s %s-%s: overlaps booking %s", slot.name, start, end, conflict.id
                )
                raise TimeConflict()

            if self.reject_occupied_slots and slot.status == SlotStatus.OCCUPIED:
                raise AlreadyOccupied()

            new_status = SlotStatus.OCCUPIED if contains(start, end, now) else slot.status
            if not self.store.slots.compare_and_swap(slot, new_status):
                logger.info("Lost booking race on slot %s", slot.name)
                raise TimeConflict()

            booking = self.store.bookings.add(
                Booking(
                    user_id=requester.id,
                    slot_id=slot.id,
                    slot_name=slot.name,
                    slot_type=slot.type,
                    start_time=start,
                    end_time=end,
                    status=BookingStatus.ACTIVE,
                    created_at=now,
                )
            )
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

        logger.info("Booked slot %s for user %s: %s-%s (%s)", slot.name, requester.id, start, end, booking.id)
        self._publish("bookings", "created", booking.id)
        if new_status == SlotStatus.OCCUPIED:
            self._publish("parking_slots", "updated", slot.id)
        return booking

    def cancel_booking(self, booking_id: str, requester: User) -> Booking:
        now = self.clock()
        try:
            booking = self.store.bookings.get(booking_id)
            if booking is None:
                raise BookingNotFound()
            if booking.user_id != requester.id and not requester.is_admin:
                raise Forbidden("Access denied")
            if booking.status != BookingStatus.ACTIVE:
                raise AlreadyInactive()

            booking.status = BookingStatus.CANCELLED
            self.store.bookings.add(booking)

            slot = self.store.slots.get(booking.slot_id) if booking.slot_id else None
            if slot is not None and not self._reconcile(slot, now):
                raise TimeConflict("This slot was just updated, please try again")
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

        logger.info("Cancelled booking %s by user %s", booking.id, requester.id)
        self._publish("bookings", "cancelled", booking.id)
        if slot is not None:
            self._publish("parking_slots", "updated", slot.id)
        return booking

    def complete_expired(self, now: Optional[datetime] = None) -> int:
        """Mark every active booking that ended before ``now`` as completed and free its slot."""

        now = now or self.clock()
        try:
            expired = self.store.bookings.expired_active(now)
            for booking in expired:
                booking.status = BookingStatus.COMPLETED
                self.store.bookings.add(booking)
            slot_ids = {booking.slot_id for booking in expired if booking.slot_id}
            for slot_id in slot_ids:
                slot = self.store.slots.get(slot_id)
                if slot is not None:
                    self._reconcile(slot, now)
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

        if expired:
            logger.info("Completed %d expired booking(s)", len(expired))
        for booking in expired:
            self._publish("bookings", "completed", booking.id)
        for slot_id in slot_ids:
            self._publish("parking_slots", "updated", slot_id)
        return len(expired)

    def add_slot(self, name: str, slot_type: SlotType, floor: int, requester: User) -> ParkingSlot:
        self._require_admin(requester)
        if self.store.slots.get_by_name(name) is not None:
            raise SlotNameTaken()
        try:
            slot = self.store.slots.add(
                ParkingSlot(name=name, type=slot_type, floor=floor, status=SlotStatus.AVAILABLE, version=0)
            )
            self.store.commit()
        except IntegrityError as exc:
            self.store.rollback()
            raise SlotNameTaken() from exc
        logger.info("Added %s slot %s on floor %s", slot_type.value, name, floor)
        self._publish("parking_slots", "created", slot.id)
        return slot

    def update_slot(self, slot_id: str, changes: Dict[str, Any], requester: User) -> ParkingSlot:
        self._require_admin(requester)
        slot = self.get_slot(slot_id)
        new_name = changes.get("name")
        if new_name and new_name != slot.name:
            existing = self.store.slots.get_by_name(new_name)
            if existing is not None:
                raise SlotNameTaken()
        try:
            for key, value in changes.items():
                if key in SLOT_FIELDS and value is not None:
                    setattr(slot, key, value)
            slot.version += 1
            self.store.commit()
        except IntegrityError as exc:
            self.store.rollback()
            raise SlotNameTaken() from exc
        logger.info("Updated slot %s", slot.name)
        self._publish("parking_slots", "updated", slot.id)
        return slot

    def delete_slot(self, slot_id: str, requester: User) -> None:
        self._require_admin(requester)
        slot = self.get_slot(slot_id)
        if self.store.bookings.has_active(slot_id):
            raise SlotInUse()
        try:
            # a booking committed since the check bumped the version
            if not self.store.slots.delete_if_unchanged(slot):
                raise SlotInUse("This slot was just booked, please try again")
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise
        logger.info("Deleted slot %s", slot.name)
        self._publish("parking_slots", "deleted", slot_id)
