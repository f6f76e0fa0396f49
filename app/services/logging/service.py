"""
Persistent Logging Service.

Engine history (job outcomes, buffer passes, scheduler events, errors) is
persisted to the app_logs table so it survives deployments and can be
inspected after a worker has gone away.

Architecture:
- DatabaseLogHandler: logging.Handler that feeds the LogBuffer
- LogBuffer: thread-safe batching with periodic flush
- LoggingService: structured helpers for job/buffer/system events
- job_context(): tags every record emitted while a job runs with its id
"""
import sys
import uuid
import time
import logging
import traceback
import threading
from collections import deque
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Dict, List, Optional

from app.models.base import utc_now


# Unique per process start
DEPLOYMENT_ID = f"deploy-{utc_now().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}"

_job_context = threading.local()


def get_current_job_id() -> Optional[str]:
    return getattr(_job_context, "job_id", None)


@contextmanager
def job_context(job_id: str):
    """Attach ``job_id`` to log entries written on this thread until exit."""
    previous = get_current_job_id()
    _job_context.job_id = job_id
    try:
        yield
    finally:
        _job_context.job_id = previous


class LogBuffer:
    """Thread-safe buffer for batching log writes to the database."""

    def __init__(self, max_size: int = 50, flush_interval: float = 2.0, session_factory=None):
        self.buffer: deque = deque()
        self.max_size = max_size
        self.flush_interval = flush_interval
        self.session_factory = session_factory
        self.lock = threading.Lock()
        self.last_flush = time.time()
        self._flush_timer: Optional[threading.Timer] = None
        self._running = True

    def add(self, entry: Dict[str, Any]):
        with self.lock:
            self.buffer.append(entry)
            if len(self.buffer) >= self.max_size:
                self._do_flush()
            elif not self._flush_timer:
                self._schedule_flush()

    def _schedule_flush(self):
        if self._running:
            self._flush_timer = threading.Timer(self.flush_interval, self._timed_flush)
            self._flush_timer.daemon = True
            self._flush_timer.start()

    def _timed_flush(self):
        with self.lock:
            self._flush_timer = None
            self._do_flush()

    def _do_flush(self):
        """Hand buffered entries to a writer thread. Caller holds the lock."""
        if not self.buffer:
            return
        entries = list(self.buffer)
        self.buffer.clear()
        self.last_flush = time.time()
        thread = threading.Thread(target=self._write_to_db, args=(entries,), daemon=True)
        thread.start()

    def _write_to_db(self, entries: List[Dict[str, Any]]):
        from app.db_connection import SessionLocal
        from app.models.logs import LogEntry

        db = (self.session_factory or SessionLocal)()
        try:
            db.add_all([LogEntry(**entry) for entry in entries])
            db.commit()
        except Exception as e:
            db.rollback()
            # Logging to a logger here would recurse back into this buffer
            print(f"[LOG-SERVICE] Failed to write {len(entries)} log entries to DB: {e}", file=sys.stderr, flush=True)
        finally:
            db.close()

    def flush_sync(self):
        with self.lock:
            if not self.buffer:
                return
            entries = list(self.buffer)
            self.buffer.clear()
        self._write_to_db(entries)

    def stop(self):
        self._running = False
        if self._flush_timer:
            self._flush_timer.cancel()
        self.flush_sync()


class DatabaseLogHandler(logging.Handler):
    """Persists records from app loggers via a LogBuffer."""

    # Skipped to avoid recursion and noise
    SKIP_PREFIXES = (
        "app.services.logging",
        "sqlalchemy",
        "apscheduler.executors",
        "urllib3",
    )

    def __init__(self, log_buffer: LogBuffer, level=logging.INFO):
        super().__init__(level)
        self.log_buffer = log_buffer

    def emit(self, record: logging.LogRecord):
        if record.name.startswith(self.SKIP_PREFIXES):
            return
        try:
            entry = {
                "timestamp": utc_now(),
                "level": record.levelname,
                "category": "app_log",
                "source": f"{record.name}:{record.funcName}:{record.lineno}",
                "message": record.getMessage(),
                "details": {
                    "logger_name": record.name,
                    "thread_name": record.threadName,
                    "process": record.process,
                },
                "job_id": get_current_job_id(),
                "deployment_id": DEPLOYMENT_ID,
            }
            if record.exc_info and record.exc_info[1]:
                entry["category"] = "error"
                entry["details"]["exception_type"] = type(record.exc_info[1]).__name__
                entry["details"]["traceback"] = traceback.format_exception(*record.exc_info)
            self.log_buffer.add(entry)
        except Exception:
            self.handleError(record)


class LoggingService:
    """
    Structured, persistent engine logging.

    A process-wide singleton. Constructing it is side-effect free;
    install() hooks the database handler into Python logging and is
    called once from application start-up.
    """

    _instance = None
    _initialized = False

    # Root, plus uvicorn.error: uvicorn's log config stops it propagating
    CAPTURED_LOGGERS = (None, "uvicorn.error")

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, session_factory=None):
        if LoggingService._initialized:
            return
        LoggingService._initialized = True
        self.deployment_id = DEPLOYMENT_ID
        self.session_factory = session_factory
        self.buffer = LogBuffer(max_size=30, flush_interval=1.5, session_factory=session_factory)
        self.db_handler: Optional[DatabaseLogHandler] = None

    def install(self):
        """Route app, uvicorn and apscheduler logs to the database."""
        if self.db_handler is not None:
            return
        self.db_handler = DatabaseLogHandler(self.buffer)
        for name in self.CAPTURED_LOGGERS:
            logging.getLogger(name).addHandler(self.db_handler)

    def log(self, level: str, category: str, message: str,
            details: Optional[Dict] = None, source: Optional[str] = None,
            duration_ms: Optional[int] = None, job_id: Optional[str] = None):
        """Write a structured log entry."""
        self.buffer.add({
            "timestamp": utc_now(),
            "level": level.upper(),
            "category": category,
            "source": source or "engine",
            "message": message,
            "details": details,
            "job_id": job_id or get_current_job_id(),
            "deployment_id": self.deployment_id,
            "duration_ms": duration_ms,
        })

    def log_job_event(self, job, event: str, details: Optional[Dict] = None,
                      duration_ms: Optional[int] = None, level: str = "INFO"):
        """Claim/dispatch/outcome events for a single job."""
        self.log(
            level=level,
            category="job",
            message=f"[{job.type}] {event}",
            details={
                "event": event,
                "job_type": job.type,
                "agent_id": job.agent_id,
                "attempts": job.attempts,
                **(details or {}),
            },
            source="worker",
            duration_ms=duration_ms,
            job_id=job.id,
        )

    def log_buffer_event(self, message: str, details: Optional[Dict] = None, level: str = "INFO"):
        self.log(level=level, category="buffer", message=message, details=details, source="buffer")

    def log_system_event(self, event_type: str, message: str,
                         details: Optional[Dict] = None, level: str = "INFO"):
        """Start-up, shutdown, scheduler registration."""
        self.log(
            level=level,
            category="system_event",
            message=f"[{event_type}] {message}",
            details={"event_type": event_type, **(details or {})},
            source="system",
        )

    def log_error(self, message: str, exception: Optional[BaseException] = None,
                  context: Optional[Dict] = None):
        details = dict(context or {})
        if exception is not None:
            details["exception_type"] = type(exception).__name__
            details["exception_message"] = str(exception)
            details["traceback"] = traceback.format_exception(type(exception), exception, exception.__traceback__)
        self.log(level="ERROR", category="error", message=message, details=details, source="error_handler")

    def flush(self):
        self.buffer.flush_sync()

    def shutdown(self):
        self.buffer.stop()
        if self.db_handler is not None:
            for name in self.CAPTURED_LOGGERS:
                logging.getLogger(name).removeHandler(self.db_handler)
            self.db_handler = None

    def cleanup_old_logs(self, retention_days: int = 7) -> int:
        """Delete log entries older than retention_days."""
        from app.db_connection import get_db_session
        from app.models.logs import LogEntry

        cutoff = utc_now() - timedelta(days=retention_days)
        with get_db_session(self.session_factory) as db:
            deleted = db.query(LogEntry).filter(LogEntry.timestamp < cutoff).delete(synchronize_session=False)
        self.log_system_event("log_cleanup", f"Deleted {deleted} logs older than {retention_days} days")
        return deleted


def get_logging_service() -> LoggingService:
    """Get or create the singleton LoggingService."""
    return LoggingService()
