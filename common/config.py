"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./parkslot.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    database_timeout_seconds: int = Field(
        default=10,
        description="Connect/lock timeout (s) applied to every database connection.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="30/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    metrics_enabled: bool = Field(default=True, description="Expose Prometheus metrics on /metrics")

    slot_cache_ttl: int = Field(default=5, description="TTL (s) for cached slot status results")
    reject_occupied_slots: bool = Field(
        default=True,
        description="Reject any new booking on a slot that is occupied right now, whatever the requested window.",
    )
    booking_sweep_interval_seconds: int = Field(
        default=60,
        description="Interval (s) between expired-booking sweeps in the bookings service; 0 disables the sweep.",
    )

    rabbitmq_url: str = Field(default="", description="AMQP URL for change events; empty disables publishing")
    rabbitmq_queue: str = Field(default="parkslot.changes", description="Durable queue receiving change events")
    rabbitmq_timeout_seconds: float = Field(default=3.0, description="RabbitMQ connection/socket timeout (s)")

    qr_service_url: str = Field(
        default="https://api.qrserver.com/v1/create-qr-code/",
        description="Third-party endpoint rendering QR images",
    )
    qr_timeout_seconds: float = Field(default=5.0, description="Timeout (s) for QR image requests")

    users_service_port: int = 8001
    slots_service_port: int = 8002
    bookings_service_port: int = 8003
    feedback_service_port: int = 8004


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
