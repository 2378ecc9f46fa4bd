"""Booking QR codes: payload encoding, image rendering and scan verification."""
from __future__ import annotations

import base64
import json
import logging
from datetime import datetime
from io import BytesIO
from typing import Optional, Tuple
from urllib.parse import urlencode

import httpx
import qrcode
from circuitbreaker import CircuitBreakerError, circuit
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .availability import contains
from .clock import to_naive_utc
from .errors import InvalidQRCode, Timeout, Unavailable
from .models import Booking, BookingStatus

logger = logging.getLogger(__name__)

QR_ACTION = "book"


class QRPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str
    booking_id: str = Field(alias="bookingId")
    slot_id: Optional[str] = Field(default=None, alias="slotId")
    slot_name: str = Field(alias="slotName")
    slot_type: str = Field(alias="slotType")
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")
    user_id: str = Field(alias="userId")
    user_name: str = Field(alias="userName")

    @field_validator("start_time", "end_time")
    @classmethod
    def _as_naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def build_qr_payload(booking: Booking) -> QRPayload:
    return QRPayload(
        action=QR_ACTION,
        booking_id=booking.id,
        slot_id=booking.slot_id,
        slot_name=booking.slot_name,
        slot_type=booking.slot_type.value,
        start_time=booking.start_time,
        end_time=booking.end_time,
        user_id=booking.user_id,
        user_name=booking.user_name,
    )


def qr_image_url(base_url: str, payload: QRPayload, size: int = 200) -> str:
    query = urlencode({"size": f"{size}x{size}", "data": payload.to_json()})
    return f"{base_url}?{query}"


def render_qr_data_uri(payload: QRPayload, box_size: int = 10) -> str:
    """Render the payload locally as a base64 PNG data URI."""

    code = qrcode.QRCode(box_size=box_size, border=4)
    code.add_data(payload.to_json())
    code.make(fit=True)
    buffer = BytesIO()
    code.make_image(fill_color="black", back_color="white").save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


@circuit(failure_threshold=5, recovery_timeout=60, expected_exception=(Timeout, Unavailable))
def _download(url: str, timeout: float) -> bytes:
    try:
        response = httpx.get(url, timeout=timeout)
        response.raise_for_status()
    except httpx.TimeoutException as exc:
        logger.warning("QR image request timed out: %s", exc)
        raise Timeout("QR code service timed out") from exc
    except httpx.HTTPError as exc:
        logger.warning("QR image request failed: %s", exc)
        raise Unavailable("QR code service unavailable") from exc
    return response.content


def fetch_qr_image(url: str, timeout: float) -> bytes:
    try:
        return _download(url, timeout)
    except CircuitBreakerError as exc:
        raise Unavailable("QR code service unavailable") from exc


def parse_qr_payload(text: str) -> QRPayload:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidQRCode("QR code is not valid booking data") from exc
    if not isinstance(raw, dict) or raw.get("action") != QR_ACTION:
        raise InvalidQRCode()
    if not raw.get("startTime") or not raw.get("endTime"):
        raise InvalidQRCode("QR code is missing booking times")
    try:
        return QRPayload.model_validate(raw)
    except ValidationError as exc:
        raise InvalidQRCode("QR code is not valid booking data") from exc


def verify_scan(payload: QRPayload, booking: Optional[Booking], now: datetime) -> Tuple[bool, bool, Optional[str]]:
    """Compare a scanned payload with the stored booking. Returns ``(valid, in_effect, reason)``."""

    if booking is None:
        return False, False, "Booking not found"
    if (
        booking.slot_id != payload.slot_id
        or booking.user_id != payload.user_id
        or booking.start_time != payload.start_time
        or booking.end_time != payload.end_time
    ):
        return False, False, "QR code does not match the booking"
    if booking.status != BookingStatus.ACTIVE:
        return False, False, f"Booking is {booking.status.value}"
    return True, contains(booking.start_time, booking.end_time, now), None
