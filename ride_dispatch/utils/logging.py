"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from ride_dispatch.config import get_settings


def setup_logging() -> None:
    """Configure structured logging for the application."""
    settings = get_settings()

    # Configure standard library logging
    log_level = getattr(logging, settings.log_level)

    if settings.log_format == "json":
        # JSON logging for production
        handler = logging.StreamHandler(sys.stdout)
        formatter = jsonlogger.JsonFormatter(
            fmt="%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
        handler.setFormatter(formatter)
    else:
        # Human-readable logging for development
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class RideAuditLogger:
    """Specialized logger for ride lifecycle records."""

    def __init__(self, component: str):
        self.component = component
        self.logger = get_logger(component)

    def log_transition(
        self,
        ride_id: str,
        from_status: str,
        to_status: str,
        actor: str,
        **kwargs: Any,
    ) -> None:
        """Log a ride status transition."""
        self.logger.info(
            "ride_transition",
            component=self.component,
            ride_id=ride_id,
            from_status=from_status,
            to_status=to_status,
            actor=actor,
            **kwargs,
        )

    def log_offers(
        self,
        ride_id: str,
        candidates: int,
        duration_ms: float | None = None,
        **kwargs: Any,
    ) -> None:
        """Log an offer fan-out."""
        log_data: dict[str, Any] = {
            "component": self.component,
            "ride_id": ride_id,
            "candidates": candidates,
        }

        if duration_ms is not None:
            log_data["duration_ms"] = duration_ms

        log_data.update(kwargs)
        self.logger.info("ride_offers_sent", **log_data)

    def log_rejection(
        self,
        ride_id: str,
        driver_id: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        """Log an acceptance that lost the race or failed a precondition."""
        self.logger.info(
            "ride_accept_rejected",
            component=self.component,
            ride_id=ride_id,
            driver_id=driver_id,
            reason=reason,
            **kwargs,
        )
