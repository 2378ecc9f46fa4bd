"""Reusable FastAPI dependencies for auth, database access and the availability engine."""
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import decode_token, get_user_by_email
from .availability import AvailabilityEngine
from .config import get_settings
from .database import get_db
from .models import RoleEnum, User
from .notifications import ChangeBroadcaster
from .repositories import SqlAlchemyStore

settings = get_settings()
oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_token(token)
    email: str | None = payload.get("sub")
    if email is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    user = get_user_by_email(db, email)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_notifier(request: Request) -> ChangeBroadcaster | None:
    return getattr(request.app.state, "notifier", None)


def get_store(db: Session = Depends(get_db)) -> SqlAlchemyStore:
    return SqlAlchemyStore(db)


def get_engine(
    store: SqlAlchemyStore = Depends(get_store),
    notifier: ChangeBroadcaster | None = Depends(get_notifier),
) -> AvailabilityEngine:
    return AvailabilityEngine(store, notifier=notifier, reject_occupied_slots=settings.reject_occupied_slots)


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency
