"""
Centralized logging for the content queue.

Every log call goes to Python logging and to an in-memory buffer, so the
admin dashboard can show recent queue activity, errors and warnings without
external log aggregation.

Entries carry the job, batch and queue they concern as first-class fields,
which lets the dashboard pull the full trail of a single job or batch:

    log = worker_logger.bind(job_id=job.id, queue=job.queue_name)
    log.info("Generation started")
    ...
    get_log_buffer().get_job_trail(job.id)
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from collections import Counter, deque
from enum import Enum
from threading import Lock

# Metadata keys lifted onto the entry itself
CONTEXT_FIELDS = ("job_id", "batch_id", "queue")


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class LogEntry:
    """A single log entry, tagged with the job, batch and queue it concerns."""

    def __init__(
        self,
        level: LogLevel,
        message: str,
        source: str = "system",
        metadata: Optional[Dict[str, Any]] = None
    ):
        metadata = dict(metadata or {})
        self.timestamp = datetime.now(timezone.utc)
        self.level = level
        self.message = message
        self.source = source
        self.job_id: Optional[str] = metadata.pop("job_id", None)
        self.batch_id: Optional[str] = metadata.pop("batch_id", None)
        self.queue: Optional[str] = metadata.pop("queue", None)
        self.metadata = metadata

    def matches(
        self,
        level: Optional[LogLevel] = None,
        source: Optional[str] = None,
        job_id: Optional[str] = None,
        batch_id: Optional[str] = None,
        queue: Optional[str] = None,
    ) -> bool:
        return (
            (level is None or self.level == level)
            and (source is None or self.source == source)
            and (job_id is None or self.job_id == job_id)
            and (batch_id is None or self.batch_id == batch_id)
            and (queue is None or self.queue == queue)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
            "source": self.source,
            "job_id": self.job_id,
            "batch_id": self.batch_id,
            "queue": self.queue,
            "metadata": self.metadata,
        }


class LogBuffer:
    """
    Thread-safe in-memory circular buffer for log entries.

    Keeps the most recent N entries for the admin queue dashboard.
    """

    def __init__(self, max_size: int = 1000):
        self._buffer: deque = deque(maxlen=max_size)
        self._lock = Lock()
        self._error_count = 0
        self._warning_count = 0

    def add(self, entry: LogEntry):
        with self._lock:
            self._buffer.append(entry)
            if entry.level in (LogLevel.ERROR, LogLevel.CRITICAL):
                self._error_count += 1
            elif entry.level == LogLevel.WARNING:
                self._warning_count += 1

    def get_recent(
        self,
        limit: int = 100,
        level: Optional[LogLevel] = None,
        source: Optional[str] = None,
        job_id: Optional[str] = None,
        batch_id: Optional[str] = None,
        queue: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Get recent log entries, newest first, optionally filtered."""
        with self._lock:
            entries = [
                e for e in self._buffer
                if e.matches(level, source, job_id, batch_id, queue)
            ]

        entries.reverse()
        return [e.to_dict() for e in entries[:limit]]

    def get_job_trail(self, job_id: str) -> List[Dict[str, Any]]:
        """Every buffered entry for one job, oldest first."""
        with self._lock:
            return [e.to_dict() for e in self._buffer if e.job_id == job_id]

    def get_errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            entries = [
                e for e in self._buffer
                if e.level in (LogLevel.ERROR, LogLevel.CRITICAL)
            ]
        entries.reverse()
        return [e.to_dict() for e in entries[:limit]]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = len(self._buffer)
            by_level = Counter(e.level.value for e in self._buffer)
            by_source = Counter(e.source for e in self._buffer)
            by_queue = Counter(e.queue for e in self._buffer if e.queue)
            failing_jobs = {
                e.job_id for e in self._buffer
                if e.job_id and e.level in (LogLevel.ERROR, LogLevel.CRITICAL)
            }

        return {
            "total": total,
            "by_level": dict(by_level),
            "by_source": dict(by_source),
            "by_queue": dict(by_queue),
            "failing_jobs": len(failing_jobs),
            "error_count": self._error_count,
            "warning_count": self._warning_count
        }

    def clear(self):
        with self._lock:
            self._buffer.clear()
            self._error_count = 0
            self._warning_count = 0


# Global log buffer instance
_log_buffer = LogBuffer()


def get_log_buffer() -> LogBuffer:
    """Get the global log buffer instance."""
    return _log_buffer


class AppLogger:
    """
    Application logger that logs to both Python logging and the in-memory buffer.

    `bind()` returns a logger that adds fixed context (job_id, batch_id,
    queue) to every call.
    """

    def __init__(self, source: str, context: Optional[Dict[str, Any]] = None):
        self.source = source
        self.context = {k: v for k, v in (context or {}).items() if v is not None}
        self._logger = logging.getLogger(f"medtour.{source}")

    def bind(self, **context) -> "AppLogger":
        return AppLogger(self.source, {**self.context, **context})

    def _log(self, level: LogLevel, message: str, metadata: Dict[str, Any]):
        metadata = {**self.context, **metadata}
        entry = LogEntry(level, message, self.source, metadata)
        _log_buffer.add(entry)

        tags = " ".join(
            f"{field}={getattr(entry, field)}" for field in CONTEXT_FIELDS if getattr(entry, field)
        )
        prefix = f"[{tags}] " if tags else ""
        extra_msg = f" | {entry.metadata}" if entry.metadata else ""
        self._logger.log(getattr(logging, level.value.upper()), f"{prefix}{message}{extra_msg}")

    def debug(self, message: str, **metadata):
        self._log(LogLevel.DEBUG, message, metadata)

    def info(self, message: str, **metadata):
        self._log(LogLevel.INFO, message, metadata)

    def warning(self, message: str, **metadata):
        self._log(LogLevel.WARNING, message, metadata)

    def error(self, message: str, **metadata):
        self._log(LogLevel.ERROR, message, metadata)

    def critical(self, message: str, **metadata):
        self._log(LogLevel.CRITICAL, message, metadata)


def get_logger(source: str) -> AppLogger:
    """Get an AppLogger for a specific source/module."""
    return AppLogger(source)


def configure_logging(level: str = "INFO"):
    """Configure root logging once for a process entrypoint."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# Pre-configured loggers for common sources
queue_logger = AppLogger("job_queue")
worker_logger = AppLogger("worker")
generation_logger = AppLogger("generation")
maintenance_logger = AppLogger("maintenance")
api_logger = AppLogger("api")
