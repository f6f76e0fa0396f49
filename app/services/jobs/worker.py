"""
Job worker — one claim/dispatch/record pass per tick.

Every claimed job is resolved exactly once: succeed() after the handler
returns (or skips), fail() when it raises. A job whose outcome can't be
recorded stays in_progress and is picked up by the stale-job release.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from app.core.config import EngineSettings, get_settings
from app.models.base import utc_now
from app.models.jobs import JobStatus
from app.services.jobs.errors import StoreUnavailableError, is_permanent
from app.services.logging.service import job_context

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    retried: int = 0
    dead_lettered: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.retried + self.dead_lettered

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "retried": self.retried,
            "dead_lettered": self.dead_lettered,
            "errors": self.errors,
        }


class JobWorker:
    def __init__(self, store, dispatcher, settings: Optional[EngineSettings] = None, events=None, clock=utc_now):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self.events = events
        self._clock = clock
        self._consecutive_store_failures = 0
        self._resume_at = None

    def tick(self, max_jobs: Optional[int] = None) -> ProcessResult:
        """
        Claim up to ``max_jobs`` due jobs and run each one.

        Handler failures never escape; StoreUnavailableError from the claim
        does, so the trigger can back off.
        """
        max_jobs = max_jobs if max_jobs is not None else self.settings.max_jobs_per_tick
        result = ProcessResult()

        jobs = self.store.claim(max_jobs)
        for job in jobs:
            result.processed += 1
            with job_context(job.id):
                self._run_one(job, result)

        if jobs:
            logger.info(
                "Tick: %d processed, %d succeeded, %d skipped, %d retried, %d dead-lettered",
                result.processed, result.succeeded, result.skipped, result.retried, result.dead_lettered,
            )
        return result

    def _run_one(self, job, result: ProcessResult):
        try:
            dispatched = self.dispatcher.execute(job)
        except Exception as e:
            permanent = is_permanent(e)
            message = f"{type(e).__name__}: {e}"
            result.errors.append(f"{job.type}:{job.id[:8]}: {message}")
            logger.warning("Job %s (%s) failed: %s", job.id, job.type, message, exc_info=not permanent)
            try:
                status = self.store.fail(job.id, message, permanent=permanent)
            except Exception as record_error:
                logger.error("Could not record failure of job %s: %s", job.id, record_error)
                return
            if status == JobStatus.DEAD_LETTERED:
                result.dead_lettered += 1
                self._event(job, "dead_lettered", {"error": message, "permanent": permanent}, level="WARNING")
            elif status == JobStatus.PENDING:
                result.retried += 1
                self._event(job, "retry_scheduled", {"error": message})
            return

        note = f"skipped: {dispatched.note}" if dispatched.skipped else None
        try:
            self.store.succeed(job.id, note=note)
        except Exception as record_error:
            logger.error("Could not record success of job %s: %s", job.id, record_error)
            return
        if dispatched.skipped:
            result.skipped += 1
            self._event(job, "skipped", {"reason": dispatched.note}, dispatched.duration_ms)
        else:
            result.succeeded += 1
            self._event(job, "succeeded", dispatched.result, dispatched.duration_ms)

    def _event(self, job, event, details=None, duration_ms=None, level="INFO"):
        if self.events is not None:
            self.events.log_job_event(job, event, details=details, duration_ms=duration_ms, level=level)

    # ------------------------------------------------------------------
    # Scheduled entry point
    # ------------------------------------------------------------------

    def scheduled_tick(self) -> Optional[ProcessResult]:
        """
        Tick from the run loop. While the store is unreachable, ticks are
        skipped with an exponentially growing pause, capped at
        max_tick_backoff_seconds.
        """
        now = self._clock()
        if self._resume_at is not None and now < self._resume_at:
            logger.debug("Worker paused until %s after store failures", self._resume_at)
            return None

        try:
            result = self.tick()
        except StoreUnavailableError as e:
            self._consecutive_store_failures += 1
            delay = min(
                self.settings.tick_seconds * (2 ** min(self._consecutive_store_failures, 16)),
                self.settings.max_tick_backoff_seconds,
            )
            self._resume_at = now + timedelta(seconds=delay)
            logger.error(
                "Job store unavailable (%d in a row), pausing worker for %ds: %s",
                self._consecutive_store_failures, delay, e,
            )
            return None

        if self._consecutive_store_failures:
            logger.info("Job store reachable again after %d failed tick(s)", self._consecutive_store_failures)
        self._consecutive_store_failures = 0
        self._resume_at = None
        return result

    @property
    def paused_until(self):
        return self._resume_at
