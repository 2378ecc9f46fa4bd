#!/usr/bin/env python3
"""Create the tables and the default slot layout: A-1..A-30 (normal) and E-1..E-10 (electric)."""
from sqlalchemy import select

from common.database import Base, SessionLocal, engine
from common.models import ParkingSlot, SlotStatus, SlotType

NORMAL_SLOTS = 30
NORMAL_PER_FLOOR = 10
ELECTRIC_SLOTS = 10
ELECTRIC_PER_FLOOR = 5


def default_layout() -> list[tuple[str, SlotType, int]]:
    layout = [(f"A-{i}", SlotType.NORMAL, (i - 1) // NORMAL_PER_FLOOR + 1) for i in range(1, NORMAL_SLOTS + 1)]
    layout += [(f"E-{i}", SlotType.ELECTRIC, (i - 1) // ELECTRIC_PER_FLOOR + 1) for i in range(1, ELECTRIC_SLOTS + 1)]
    return layout


def seed_slots() -> int:
    Base.metadata.create_all(bind=engine)
    created = 0
    with SessionLocal() as session:
        existing = set(session.scalars(select(ParkingSlot.name)))
        for name, slot_type, floor in default_layout():
            if name in existing:
                continue
            session.add(ParkingSlot(name=name, type=slot_type, floor=floor, status=SlotStatus.AVAILABLE, version=0))
            created += 1
        session.commit()
    return created


if __name__ == "__main__":
    print(f"Seeded {seed_slots()} slot(s).")
