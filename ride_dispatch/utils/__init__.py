"""Utility modules."""

from ride_dispatch.utils.logging import RideAuditLogger, get_logger, setup_logging

__all__ = ["setup_logging", "get_logger", "RideAuditLogger"]
