from datetime import datetime
from typing import List, Optional

from fastapi import Depends, Query, Request, status

from common.availability import AvailabilityEngine
from common.cache import SimpleTTLCache, slot_status_key
from common.clock import to_naive_utc
from common.config import get_settings
from common.dependencies import get_current_user, get_engine
from common.models import ParkingSlot, SlotStatus, SlotType, User
from common.rate_limit import limiter
from common.schemas import SlotCreate, SlotRead, SlotStatusRead, SlotUpdate
from common.service import create_service_app

settings = get_settings()
slot_status_cache: SimpleTTLCache[SlotStatusRead] = SimpleTTLCache(ttl=settings.slot_cache_ttl)

app = create_service_app("Slots Service", "slots")


@app.get("/slots", response_model=List[SlotRead])
@limiter.limit("60/minute")
def list_slots(
    request: Request,
    floor: Optional[int] = Query(default=None, ge=1),
    type: Optional[SlotType] = None,
    engine: AvailabilityEngine = Depends(get_engine),
) -> List[ParkingSlot]:
    return engine.list_slots(floor=floor, slot_type=type)


@app.get("/slots/available", response_model=List[SlotRead])
@limiter.limit("60/minute")
def available_slots(
    request: Request,
    as_of: Optional[datetime] = None,
    engine: AvailabilityEngine = Depends(get_engine),
) -> List[ParkingSlot]:
    return engine.get_available_slots(to_naive_utc(as_of))


@app.get("/slots/{slot_id}", response_model=SlotRead)
@limiter.limit("60/minute")
def get_slot(request: Request, slot_id: str, engine: AvailabilityEngine = Depends(get_engine)) -> ParkingSlot:
    return engine.get_slot(slot_id)


@app.get("/slots/{slot_id}/status", response_model=SlotStatusRead)
@limiter.limit("30/minute")
def slot_status(
    request: Request,
    slot_id: str,
    force_refresh: bool = False,
    engine: AvailabilityEngine = Depends(get_engine),
) -> SlotStatusRead:
    cache_key = slot_status_key(slot_id)
    if force_refresh:
        slot_status_cache.pop(cache_key)

    def lookup() -> SlotStatusRead:
        now = engine.clock()
        slot, booking = engine.slot_occupancy(slot_id, now)
        return SlotStatusRead(
            slot_id=slot.id,
            status=SlotStatus.OCCUPIED if booking else SlotStatus.AVAILABLE,
            booking_id=booking.id if booking else None,
            checked_at=now,
        )

    return slot_status_cache.get_or_set(cache_key, lookup)


@app.post("/slots", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_slot(
    request: Request,
    slot_in: SlotCreate,
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> ParkingSlot:
    return engine.add_slot(slot_in.name, slot_in.type, slot_in.floor, current_user)


@app.put("/slots/{slot_id}", response_model=SlotRead)
@limiter.limit("15/minute")
def update_slot(
    request: Request,
    slot_id: str,
    slot_update: SlotUpdate,
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> ParkingSlot:
    slot = engine.update_slot(slot_id, slot_update.model_dump(exclude_unset=True), current_user)
    slot_status_cache.pop(slot_status_key(slot_id))
    return slot


@app.post("/slots/{slot_id}/reconcile", response_model=SlotRead)
@limiter.limit("15/minute")
def reconcile_slot(
    request: Request,
    slot_id: str,
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> ParkingSlot:
    slot = engine.reconcile_slot(slot_id, current_user)
    slot_status_cache.pop(slot_status_key(slot_id))
    return slot


@app.delete("/slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_slot(
    request: Request,
    slot_id: str,
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> None:
    engine.delete_slot(slot_id, current_user)
    slot_status_cache.pop(slot_status_key(slot_id))
