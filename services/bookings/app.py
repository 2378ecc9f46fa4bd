import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool

from common import qr
from common.availability import AvailabilityEngine
from common.clock import to_naive_utc
from common.config import get_settings
from common.database import Base, SessionLocal, engine as db_engine
from common.dependencies import get_current_user, get_engine
from common.models import Booking, BookingStatus, User
from common.rate_limit import limiter
from common.repositories import SqlAlchemyStore
from common.schemas import (
    AvailabilityRead,
    BookingCreate,
    BookingRead,
    BookingStatsRead,
    QRCodeRead,
    QRScanRequest,
    QRScanResult,
)
from common.service import create_service_app

logger = logging.getLogger(__name__)
settings = get_settings()


def run_expiry_sweep(fastapi_app: FastAPI) -> int:
    session = SessionLocal()
    try:
        sweeper = AvailabilityEngine(SqlAlchemyStore(session), notifier=fastapi_app.state.notifier)
        return sweeper.complete_expired()
    finally:
        session.close()


async def _sweep_forever(fastapi_app: FastAPI, interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(run_expiry_sweep, fastapi_app)
        except Exception:  # keep sweeping; the next pass retries whatever failed
            logger.exception("Expired booking sweep failed")


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=db_engine)
    sweeper: Optional[asyncio.Task] = None
    if settings.booking_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(_sweep_forever(fastapi_app, settings.booking_sweep_interval_seconds))
    yield
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper


app = create_service_app("Bookings Service", "bookings", lifespan=lifespan)


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> Booking:
    return engine.book_slot(booking_in.slot_id, booking_in.start_time, booking_in.end_time, current_user)


@app.get("/bookings", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None, max_length=100),
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> List[Booking]:
    return engine.list_bookings(current_user, status=status_filter, search=search)


@app.get("/bookings/me", response_model=List[BookingRead])
@limiter.limit("60/minute")
def list_my_bookings(
    request: Request,
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> List[Booking]:
    return engine.list_user_bookings(current_user.id)


@app.get("/bookings/availability", response_model=AvailabilityRead)
@limiter.limit("40/minute")
def check_availability(
    request: Request,
    slot_id: str,
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
    engine: AvailabilityEngine = Depends(get_engine),
) -> AvailabilityRead:
    start, end = to_naive_utc(start_time), to_naive_utc(end_time)
    return AvailabilityRead(
        slot_id=slot_id,
        start_time=start,
        end_time=end,
        available=engine.check_availability(slot_id, start, end),
    )


@app.get("/bookings/stats", response_model=BookingStatsRead)
@limiter.limit("30/minute")
def booking_stats(
    request: Request,
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> BookingStatsRead:
    return BookingStatsRead.model_validate(engine.booking_stats(current_user))


@app.get("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: str,
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> Booking:
    return engine.get_booking(booking_id, current_user)


@app.post("/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: str,
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> Booking:
    return engine.cancel_booking(booking_id, current_user)


@app.get("/bookings/{booking_id}/qr", response_model=QRCodeRead)
@limiter.limit("30/minute")
def booking_qr(
    request: Request,
    booking_id: str,
    size: int = Query(200, ge=100, le=1000),
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> QRCodeRead:
    payload = qr.build_qr_payload(engine.get_booking(booking_id, current_user))
    return QRCodeRead(
        payload=payload.model_dump(mode="json", by_alias=True),
        data=payload.to_json(),
        image_url=qr.qr_image_url(settings.qr_service_url, payload, size),
        image_data=qr.render_qr_data_uri(payload),
    )


@app.get("/bookings/{booking_id}/qr.png", response_class=Response)
@limiter.limit("10/minute")
def booking_qr_image(
    request: Request,
    booking_id: str,
    size: int = Query(200, ge=100, le=1000),
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> Response:
    payload = qr.build_qr_payload(engine.get_booking(booking_id, current_user))
    image = qr.fetch_qr_image(qr.qr_image_url(settings.qr_service_url, payload, size), settings.qr_timeout_seconds)
    return Response(content=image, media_type="image/png")


@app.post("/qr/scan", response_model=QRScanResult)
@limiter.limit("60/minute")
def scan_qr(
    request: Request,
    scan: QRScanRequest,
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> QRScanResult:
    payload = qr.parse_qr_payload(scan.data)
    booking = engine.store.bookings.get(payload.booking_id)
    valid, in_effect, reason = qr.verify_scan(payload, booking, engine.clock())
    logger.info("QR scan of booking %s by %s: valid=%s", payload.booking_id, current_user.id, valid)
    return QRScanResult(
        valid=valid,
        in_effect=in_effect,
        reason=reason,
        booking=BookingRead.model_validate(booking) if valid else None,
    )


@app.get("/analytics/slots/popularity")
@limiter.limit("30/minute")
def slot_popularity(
    request: Request,
    limit: int = Query(5, ge=1, le=25),
    current_user: User = Depends(get_current_user),
    engine: AvailabilityEngine = Depends(get_engine),
) -> list[dict]:
    return engine.slot_popularity(current_user, limit)
