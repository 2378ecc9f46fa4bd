"""Engine, session factory and declarative base shared by all services."""
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings

settings = get_settings()


def _connect_args(url: str, timeout: int) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # timeout is how long a writer waits on SQLite's database lock
        return {"check_same_thread": False, "timeout": timeout}
    if url.startswith("postgresql"):
        return {"connect_timeout": timeout, "options": f"-c lock_timeout={timeout * 1000}"}
    return {}


class Base(DeclarativeBase):
    pass


engine = create_engine(
    settings.database_url,
    connect_args=_connect_args(settings.database_url, settings.database_timeout_seconds),
    pool_pre_ping=True,
    **({} if settings.database_url.startswith("sqlite") else {"pool_timeout": settings.database_timeout_seconds}),
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
