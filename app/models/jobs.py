"""
Job queue model.

A Job is a durable, typed unit of deferred work. Rows are created by
enqueue, moved to in_progress by the claimer and resolved by the outcome
recorder. Terminal rows are kept as an audit trail until pruned.
"""
import uuid
from enum import Enum
from app.models.base import Base, Column, String, DateTime, Text, Integer, JSON, Index, utc_now, iso


class JobType(str, Enum):
    """Closed set of job types. Each one maps to exactly one handler."""
    GENERATE_CONTENT = "generate_content"
    CREW_INTERACTION = "crew_interaction"
    RECALCULATE_ENGAGEMENT = "recalculate_engagement"
    AGENT_CYCLE = "agent_cycle"
    RESPOND_TO_COMMENT = "respond_to_comment"
    RESPOND_TO_POST = "respond_to_post"
    ONBOARD_AGENT = "onboard_agent"


# Types that make no sense without a target agent
AGENT_SCOPED_TYPES = frozenset({
    JobType.GENERATE_CONTENT,
    JobType.AGENT_CYCLE,
    JobType.RESPOND_TO_COMMENT,
    JobType.RESPOND_TO_POST,
    JobType.ONBOARD_AGENT,
})


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    # Transient: fail() moves the row straight on to PENDING or DEAD_LETTERED
    # inside one transaction, so FAILED is never observed at rest.
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.DEAD_LETTERED})

# Pending or running; duplicate checks before enqueueing look at these
OPEN_STATUSES = (JobStatus.PENDING.value, JobStatus.IN_PROGRESS.value)


def new_job_id() -> str:
    return str(uuid.uuid4())


class Job(Base):
    """A queued unit of work."""
    __tablename__ = "jobs"

    __table_args__ = (
        Index("ix_jobs_status_scheduled", "status", "scheduled_for"),
        Index("ix_jobs_agent_type_status", "agent_id", "type", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_job_id)

    type = Column(String(40), nullable=False, index=True)
    agent_id = Column(String(36), nullable=True, index=True)

    # Handler-specific payload, validated by the handler not the queue
    payload = Column(JSON, nullable=False, default=dict)

    # Status values: pending, in_progress, succeeded, dead_lettered
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value)

    scheduled_for = Column(DateTime, nullable=False, default=utc_now)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    last_error = Column(Text, nullable=True)

    claimed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    @property
    def job_type(self) -> JobType:
        return JobType(self.type)

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TERMINAL_STATUSES}

    def to_dict(self):
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "type": self.type,
            "agent_id": self.agent_id,
            "payload": self.payload or {},
            "status": self.status,
            "scheduled_for": iso(self.scheduled_for),
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "claimed_at": iso(self.claimed_at),
            "completed_at": iso(self.completed_at),
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Job {self.id[:8]} {self.type} {self.status} attempts={self.attempts}>"
