"""App factory shared by the services: middleware, error handlers, health and change polling."""
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .config import get_settings
from .database import Base, engine
from .dependencies import get_notifier, get_store
from .errors import register_error_handlers
from .logging_middleware import add_audit_middleware
from .notifications import ChangeBroadcaster, build_notifier
from .rate_limit import apply_rate_limiter
from .repositories import SqlAlchemyStore
from .schemas import ChangesRead

settings = get_settings()


@asynccontextmanager
async def migrations_lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_service_app(title: str, service_name: str, lifespan: Optional[Callable] = None) -> FastAPI:
    fastapi_app = FastAPI(title=title, version="1.0.0", lifespan=lifespan or migrations_lifespan)
    fastapi_app.state.notifier = build_notifier(settings)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, service_name)
    register_error_handlers(fastapi_app)
    if settings.metrics_enabled:
        Instrumentator().instrument(fastapi_app).expose(fastapi_app, include_in_schema=False)

    @fastapi_app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        return {"status": "ok", "service": service_name}

    @fastapi_app.get("/changes", response_model=ChangesRead, tags=["changes"])
    def changes(
        store: SqlAlchemyStore = Depends(get_store),
        notifier: ChangeBroadcaster | None = Depends(get_notifier),
    ) -> ChangesRead:
        """Poll target: timestamps move whenever any service writes a slot or booking."""

        return ChangesRead(
            revision=notifier.revision if notifier else 0,
            slots_updated_at=store.slots.latest_update(),
            bookings_updated_at=store.bookings.latest_update(),
        )

    return fastapi_app
