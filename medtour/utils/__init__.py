"""Utility modules for the content queue."""

from medtour.utils.logging import (
    get_logger,
    get_log_buffer,
    configure_logging,
    LogLevel,
    LogEntry,
    AppLogger,
    queue_logger,
    worker_logger,
    generation_logger,
    maintenance_logger,
    api_logger,
)

__all__ = [
    "get_logger",
    "get_log_buffer",
    "configure_logging",
    "LogLevel",
    "LogEntry",
    "AppLogger",
    "queue_logger",
    "worker_logger",
    "generation_logger",
    "maintenance_logger",
    "api_logger",
]
