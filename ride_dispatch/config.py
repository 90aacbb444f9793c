"""Configuration management for the dispatch service."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Redis Configuration
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")

    # API Configuration
    api_port: int = Field(default=8000, description="API server port")
    api_host: str = Field(default="0.0.0.0", description="API server host")

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")

    # Security
    secret_key: str = Field(..., description="Secret key for JWT verification")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")

    # Dispatch Settings
    dispatch_radius_m: float = Field(
        default=5000.0, description="Candidate search radius around pickup in meters"
    )
    dispatch_fanout_limit: int = Field(
        default=10, ge=1, description="Max drivers offered a single ride"
    )
    offer_window_seconds: int = Field(
        default=30, ge=1, description="Seconds a driver has to accept an offer"
    )
    enforce_offer_expiry: bool = Field(
        default=True, description="Reject acceptances after the offer window closes"
    )
    nearby_drivers_limit: int = Field(
        default=20, ge=1, description="Max drivers returned by nearby queries"
    )
    ride_history_limit: int = Field(default=50, ge=1, description="Rides per history page")

    # Store Settings
    store_max_attempts: int = Field(
        default=50, ge=1, description="Optimistic transaction attempts before giving up"
    )

    # Telemetry Settings
    location_min_interval_ms: int = Field(
        default=0, ge=0, description="Drop location reports closer together than this"
    )

    # Event Delivery
    event_bus_backend: Literal["local", "redis"] = Field(
        default="redis", description="Deliver events in-process or over Redis pub/sub"
    )
    event_channel: str = Field(
        default="dispatch:events", description="Redis pub/sub channel for events"
    )
    event_listener_retry_delay: float = Field(
        default=1.0, gt=0, description="First resubscribe delay after a lost connection"
    )
    event_listener_max_delay: float = Field(
        default=30.0, gt=0, description="Cap on the resubscribe backoff"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
