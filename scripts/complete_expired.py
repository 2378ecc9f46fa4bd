#!/usr/bin/env python3
"""One-shot expired-booking sweep, for running from cron instead of the bookings service."""
import logging

from common.availability import AvailabilityEngine
from common.config import get_settings
from common.database import SessionLocal
from common.notifications import build_notifier
from common.repositories import SqlAlchemyStore


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    with SessionLocal() as session:
        sweeper = AvailabilityEngine(SqlAlchemyStore(session), notifier=build_notifier(get_settings()))
        completed = sweeper.complete_expired()
    print(f"Completed {completed} expired booking(s).")


if __name__ == "__main__":
    main()
