"""Typed domain errors and their mapping onto HTTP responses."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

logger = logging.getLogger(__name__)


class ParkingError(Exception):
    """Base class for every business-rule or collaborator failure the services report."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"
    message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class NotFound(ParkingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    message = "Resource not found"


class SlotNotFound(NotFound):
    message = "Slot not found"


class BookingNotFound(NotFound):
    message = "Booking not found"


class UserNotFound(NotFound):
    message = "User not found"


class Forbidden(ParkingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    message = "You are not allowed to perform this action"


class InvalidInterval(ParkingError):
    code = "invalid_interval"
    message = "End time must be after start time"


class InvalidQRCode(ParkingError):
    code = "invalid_qr_code"
    message = "QR code does not contain a parking booking"


class TimeConflict(ParkingError):
    status_code = status.HTTP_409_CONFLICT
    code = "time_conflict"
    message = "This slot is already booked for the selected time"


class AlreadyOccupied(ParkingError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_occupied"
    message = "This slot is already occupied"


class AlreadyInactive(ParkingError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_inactive"
    message = "Only active bookings can be cancelled"


class SlotInUse(ParkingError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_in_use"
    message = "Cannot delete slot with active bookings"


class SlotNameTaken(ParkingError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_name_taken"
    message = "A slot with this name already exists"


class Timeout(ParkingError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    code = "timeout"
    message = "The request timed out, please try again"


class Unavailable(ParkingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "unavailable"
    message = "Service temporarily unavailable, please try again"


def _error_response(exc: ParkingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def parking_error_handler(_: Request, exc: ParkingError) -> JSONResponse:
    return _error_response(exc)


def database_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return _error_response(Unavailable())


def database_timeout_handler(request: Request, exc: PoolTimeoutError) -> JSONResponse:
    logger.error("Database pool timeout on %s %s: %s", request.method, request.url.path, exc)
    return _error_response(Timeout())


def register_error_handlers(app: FastAPI) -> None:
    """Attach the domain and collaborator error handlers to an app."""

    app.add_exception_handler(ParkingError, parking_error_handler)
    app.add_exception_handler(OperationalError, database_unavailable_handler)
    app.add_exception_handler(PoolTimeoutError, database_timeout_handler)
