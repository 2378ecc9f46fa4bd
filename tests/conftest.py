import os
from datetime import datetime
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("METRICS_ENABLED", "false")
os.environ.setdefault("BOOKING_SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("RABBITMQ_URL", "")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.auth import get_password_hash  # noqa: E402
from common.availability import AvailabilityEngine  # noqa: E402
from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import ParkingSlot, RoleEnum, SlotStatus, SlotType, User  # noqa: E402
from common.notifications import ChangeBroadcaster  # noqa: E402
from common.repositories import SqlAlchemyStore  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.feedback.app import app as feedback_app  # noqa: E402
from services.slots.app import app as slots_app, slot_status_cache  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    slot_status_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def slots_client() -> Generator[TestClient, None, None]:
    with TestClient(slots_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


@pytest.fixture()
def feedback_client() -> Generator[TestClient, None, None]:
    with TestClient(feedback_app) as client:
        yield client


@pytest.fixture()
def login(users_client) -> Callable[..., dict[str, str]]:
    """Register (if needed) and log in a user, returning bearer headers."""

    def _login(email: str, name: str = "User", role: RoleEnum = RoleEnum.USER) -> dict[str, str]:
        users_client.post(
            "/users/register",
            json={"name": name, "email": email, "password": PASSWORD, "role": role.value},
        )
        response = users_client.post(
            "/users/login",
            data={"username": email, "password": PASSWORD},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token = response.json()["access_token"]
        return {"Authorization": f"Bearer {token}"}

    return _login


@pytest.fixture()
def admin_headers(login) -> dict[str, str]:
    return login("admin@example.com", name="Admin", role=RoleEnum.ADMIN)


@pytest.fixture()
def user_headers(login) -> dict[str, str]:
    return login("driver@example.com", name="Driver")


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    def _make_user(email: str, role: RoleEnum = RoleEnum.USER, name: str = "Test User") -> User:
        user = User(name=name, email=email, role=role, hashed_password=get_password_hash(PASSWORD))
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture()
def make_slot(db_session) -> Callable[..., ParkingSlot]:
    def _make_slot(name: str = "A-1", slot_type: SlotType = SlotType.NORMAL, floor: int = 1) -> ParkingSlot:
        slot = ParkingSlot(name=name, type=slot_type, floor=floor, status=SlotStatus.AVAILABLE, version=0)
        db_session.add(slot)
        db_session.commit()
        return slot

    return _make_slot


@pytest.fixture()
def now() -> datetime:
    return datetime(2026, 3, 2, 11, 0, 0)


@pytest.fixture()
def notifier() -> ChangeBroadcaster:
    return ChangeBroadcaster()


@pytest.fixture()
def availability(db_session, notifier, now) -> AvailabilityEngine:
    """Engine with a frozen clock at ``now`` (11:00)."""

    return AvailabilityEngine(SqlAlchemyStore(db_session), notifier=notifier, clock=lambda: now)
