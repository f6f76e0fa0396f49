"""
PostgreSQL-backed job store: enqueue, claim, and outcome recording.

The claim is the only concurrency-critical operation in the engine. It
selects due rows with FOR UPDATE SKIP LOCKED and marks them in_progress in
the same UPDATE statement, so two workers polling at once can never get
the same job back.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import DBAPIError

from app.core.config import EngineSettings, get_settings
from app.db_connection import get_db_session
from app.models.base import utc_now
from app.models.jobs import (
    AGENT_SCOPED_TYPES,
    OPEN_STATUSES,
    Job,
    JobStatus,
    JobType,
    TERMINAL_STATUSES,
)
from app.services.jobs.errors import StoreUnavailableError
from app.services.jobs.policy import RetryPolicy

logger = logging.getLogger(__name__)

# last_error is kept for diagnostics, not as a log sink
MAX_ERROR_LENGTH = 4000


def coerce_job_type(job_type) -> JobType:
    """Accept a JobType or its string value; reject anything else."""
    if isinstance(job_type, JobType):
        return job_type
    try:
        return JobType(job_type)
    except ValueError:
        raise ValueError(f"Unknown job type: {job_type!r}")


class JobStore:
    """Durable job queue over the jobs table."""

    def __init__(
        self,
        session_factory=None,
        settings: Optional[EngineSettings] = None,
        clock=utc_now,
    ):
        self._session_factory = session_factory
        self.settings = settings or get_settings()
        self.retry_policy = RetryPolicy(
            base_seconds=self.settings.backoff_base_seconds,
            max_seconds=self.settings.backoff_max_seconds,
        )
        self._clock = clock

    @contextmanager
    def _scope(self, db=None):
        """Reuse the caller's session when given one, else open and commit our own."""
        if db is not None:
            yield db
            return
        with get_db_session(self._session_factory) as session:
            yield session

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def _build(
        self,
        job_type,
        agent_id: Optional[str],
        payload: Optional[Dict[str, Any]],
        scheduled_for: Optional[datetime],
        max_attempts: Optional[int],
    ) -> Job:
        jt = coerce_job_type(job_type)
        if jt in AGENT_SCOPED_TYPES and not agent_id:
            raise ValueError(f"{jt.value} jobs require an agent_id")
        now = self._clock()
        return Job(
            type=jt.value,
            agent_id=agent_id,
            payload=dict(payload or {}),
            status=JobStatus.PENDING.value,
            scheduled_for=scheduled_for or now,
            attempts=0,
            max_attempts=max_attempts or self.settings.max_attempts,
            created_at=now,
            updated_at=now,
        )

    def enqueue(
        self,
        job_type,
        agent_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        scheduled_for: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
        db=None,
    ) -> Job:
        """
        Create a pending job.

        The store does not deduplicate; callers that must not double-enqueue
        check has_pending_job() first.
        """
        job = self._build(job_type, agent_id, payload, scheduled_for, max_attempts)
        with self._scope(db) as session:
            session.add(job)
            session.flush()
        logger.info("Enqueued %s job %s (agent=%s, run at %s)", job.type, job.id, agent_id, job.scheduled_for)
        return job

    def enqueue_many(self, specs: Iterable[Dict[str, Any]], db=None) -> int:
        """Enqueue several jobs in one transaction. Each spec mirrors enqueue()'s kwargs."""
        jobs = [
            self._build(
                spec["job_type"],
                spec.get("agent_id"),
                spec.get("payload"),
                spec.get("scheduled_for"),
                spec.get("max_attempts"),
            )
            for spec in specs
        ]
        if not jobs:
            return 0
        with self._scope(db) as session:
            session.add_all(jobs)
            session.flush()
        logger.info("Enqueued %d jobs", len(jobs))
        return len(jobs)

    def has_pending_job(self, job_type, agent_id: Optional[str], db=None) -> bool:
        """True while a pending or running job of this type exists for the agent."""
        jt = coerce_job_type(job_type)
        with self._scope(db) as session:
            query = session.query(Job.id).filter(
                Job.type == jt.value,
                Job.status.in_(OPEN_STATUSES),
            )
            if agent_id is None:
                query = query.filter(Job.agent_id.is_(None))
            else:
                query = query.filter(Job.agent_id == agent_id)
            return query.first() is not None

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim(self, limit: int = 10) -> List[Job]:
        """
        Atomically claim up to ``limit`` due jobs, oldest scheduled_for first.

        Raises StoreUnavailableError if the store can't be reached; in that
        case nothing was claimed.
        """
        if limit <= 0:
            return []
        now = self._clock()
        try:
            with get_db_session(self._session_factory) as db:
                jobs = self._claim_in(db, limit, now)
        except DBAPIError as e:
            raise StoreUnavailableError(f"Job store unavailable during claim: {e}") from e

        if jobs:
            logger.info("Claimed %d job(s): %s", len(jobs), ", ".join(f"{j.type}:{j.id[:8]}" for j in jobs))
        return jobs

    def _claim_in(self, db, limit: int, now: datetime) -> List[Job]:
        remaining = self._remaining_slots(db)
        saturated = [name for name, slots in remaining.items() if slots <= 0]

        candidates = (
            select(Job.id)
            .where(
                Job.status == JobStatus.PENDING.value,
                Job.scheduled_for <= now,
            )
            .order_by(Job.scheduled_for.asc(), Job.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        if saturated:
            candidates = candidates.where(Job.type.notin_(saturated))

        stmt = (
            update(Job)
            .where(Job.id.in_(candidates))
            .values(
                status=JobStatus.IN_PROGRESS.value,
                claimed_at=now,
                updated_at=now,
            )
            .returning(Job)
        )
        claimed = sorted(db.scalars(stmt).all(), key=lambda j: (j.scheduled_for, j.created_at))

        # A capped type may have come back with more rows than it has free
        # slots; hand the overflow back before the transaction commits.
        kept, overflow = [], []
        for job in claimed:
            if job.type in remaining:
                if remaining[job.type] <= 0:
                    overflow.append(job.id)
                    continue
                remaining[job.type] -= 1
            kept.append(job)

        if overflow:
            db.execute(
                update(Job)
                .where(Job.id.in_(overflow))
                .values(status=JobStatus.PENDING.value, claimed_at=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            logger.debug("Returned %d job(s) over their concurrency cap", len(overflow))
        return kept

    def _remaining_slots(self, db) -> Dict[str, int]:
        """Free slots per capped type: cap minus jobs currently in progress."""
        limits = self.settings.concurrency_limits or {}
        remaining = {}
        dialect = db.get_bind().dialect.name
        is_postgres = dialect == "postgresql"
        if limits and dialect == "sqlite":
            # SQLite has no row locks; an empty UPDATE takes the database
            # write lock so the counts below can't go stale before the claim
            db.execute(
                update(Job)
                .where(Job.id.is_(None))
                .values(updated_at=Job.updated_at)
                .execution_options(synchronize_session=False)
            )
        # Sorted so concurrent claimers take the advisory locks in the same order
        for type_name in sorted(limits):
            if is_postgres:
                db.execute(
                    text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                    {"key": f"jobs:{type_name}"},
                )
            running = (
                db.query(func.count(Job.id))
                .filter(Job.type == type_name, Job.status == JobStatus.IN_PROGRESS.value)
                .scalar()
            )
            remaining[type_name] = max(0, limits[type_name] - (running or 0))
        return remaining

    # ------------------------------------------------------------------
    # Outcome recording
    # ------------------------------------------------------------------

    def succeed(self, job_id: str, note: Optional[str] = None) -> bool:
        """
        Mark a claimed job succeeded.

        Returns False when the job is missing or no longer in progress
        (for example it was already resolved by the stale-job release).
        """
        with get_db_session(self._session_factory) as db:
            job = db.query(Job).filter(Job.id == job_id).with_for_update().first()
            if job is None:
                logger.warning("succeed(): job %s not found", job_id)
                return False
            if job.status != JobStatus.IN_PROGRESS.value:
                logger.warning("succeed(): job %s is %s, not in_progress, ignoring", job_id, job.status)
                return False
            now = self._clock()
            job.status = JobStatus.SUCCEEDED.value
            job.completed_at = now
            job.claimed_at = None
            job.updated_at = now
            if note:
                job.last_error = note[:MAX_ERROR_LENGTH]
        return True

    def fail(self, job_id: str, error: str, permanent: bool = False) -> Optional[JobStatus]:
        """
        Record a failed attempt.

        Increments attempts, then either reschedules the job (pending, with
        backoff) or dead-letters it when the failure is permanent or the
        attempt ceiling is reached. Returns the resulting status, or None if
        the job was not in progress.
        """
        with get_db_session(self._session_factory) as db:
            job = db.query(Job).filter(Job.id == job_id).with_for_update().first()
            if job is None:
                logger.warning("fail(): job %s not found", job_id)
                return None
            if job.status != JobStatus.IN_PROGRESS.value:
                logger.warning("fail(): job %s is %s, not in_progress, ignoring", job_id, job.status)
                return None
            return self._record_failure(job, error, permanent, self._clock())

    def _record_failure(self, job: Job, error: str, permanent: bool, now: datetime) -> JobStatus:
        job.attempts = (job.attempts or 0) + 1
        job.last_error = (error or "Unknown error")[:MAX_ERROR_LENGTH]
        job.claimed_at = None
        job.updated_at = now

        if self.retry_policy.should_dead_letter(job.attempts, job.max_attempts, permanent):
            job.status = JobStatus.DEAD_LETTERED.value
            job.completed_at = now
            logger.warning(
                "Job %s (%s) dead-lettered after %d attempt(s)%s: %s",
                job.id, job.type, job.attempts, " [permanent]" if permanent else "", job.last_error,
            )
            return JobStatus.DEAD_LETTERED

        delay = self.retry_policy.backoff(job.attempts)
        job.status = JobStatus.PENDING.value
        job.scheduled_for = now + delay
        logger.info(
            "Job %s (%s) failed attempt %d/%d, retrying in %ds: %s",
            job.id, job.type, job.attempts, job.max_attempts, int(delay.total_seconds()), job.last_error,
        )
        return JobStatus.PENDING

    def release_stale(self, max_age_minutes: Optional[int] = None) -> int:
        """
        Resolve jobs stuck in_progress for too long (worker crashed or
        deploy interrupted them). Each one goes through the failure path,
        so it counts as an attempt.
        """
        max_age = max_age_minutes if max_age_minutes is not None else self.settings.stale_minutes
        now = self._clock()
        cutoff = now - timedelta(minutes=max_age)
        with get_db_session(self._session_factory) as db:
            stuck = (
                db.query(Job)
                .filter(
                    Job.status == JobStatus.IN_PROGRESS.value,
                    Job.claimed_at <= cutoff,
                )
                .with_for_update(skip_locked=True)
                .all()
            )
            for job in stuck:
                self._record_failure(
                    job,
                    f"Worker lost: in progress for more than {max_age} minutes",
                    False,
                    now,
                )
        if stuck:
            logger.warning("Released %d stale in-progress job(s)", len(stuck))
        return len(stuck)

    # ------------------------------------------------------------------
    # Admin / inspection
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Optional[Job]:
        with get_db_session(self._session_factory) as db:
            return db.query(Job).filter(Job.id == job_id).first()

    def list_jobs(
        self,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        agent_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[Job]:
        with get_db_session(self._session_factory) as db:
            query = db.query(Job)
            if status:
                query = query.filter(Job.status == JobStatus(status).value)
            if job_type:
                query = query.filter(Job.type == coerce_job_type(job_type).value)
            if agent_id:
                query = query.filter(Job.agent_id == agent_id)
            return query.order_by(Job.created_at.desc()).limit(limit).all()

    def counts(self) -> Dict[str, Dict[str, int]]:
        """Job counts grouped by status and by type (open jobs only for the latter)."""
        with get_db_session(self._session_factory) as db:
            by_status = dict(
                db.query(Job.status, func.count(Job.id)).group_by(Job.status).all()
            )
            by_type = dict(
                db.query(Job.type, func.count(Job.id))
                .filter(Job.status.in_(OPEN_STATUSES))
                .group_by(Job.type)
                .all()
            )
        return {
            "by_status": {s.value: by_status.get(s.value, 0) for s in JobStatus if s != JobStatus.FAILED},
            "open_by_type": {t.value: by_type.get(t.value, 0) for t in JobType},
        }

    def retry_dead_letter(self, job_id: str) -> Optional[Job]:
        """
        Manually retry a dead-lettered job by enqueueing a fresh copy.

        The dead-lettered row stays as it is for the audit trail.
        """
        with get_db_session(self._session_factory) as db:
            original = db.query(Job).filter(Job.id == job_id).first()
            if original is None or original.status != JobStatus.DEAD_LETTERED.value:
                return None
            payload = dict(original.payload or {})
            payload["retry_of"] = original.id
            job = self._build(original.type, original.agent_id, payload, None, original.max_attempts)
            db.add(job)
            db.flush()
        logger.info("Re-enqueued dead-lettered job %s as %s", job_id, job.id)
        return job

    def prune(self, retention_days: Optional[int] = None) -> int:
        """Delete terminal jobs that completed more than retention_days ago."""
        days = retention_days if retention_days is not None else self.settings.job_retention_days
        cutoff = self._clock() - timedelta(days=days)
        with get_db_session(self._session_factory) as db:
            deleted = (
                db.query(Job)
                .filter(
                    Job.status.in_([s.value for s in TERMINAL_STATUSES]),
                    Job.completed_at < cutoff,
                )
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.info("Pruned %d terminal job(s) older than %d days", deleted, days)
        return deleted
