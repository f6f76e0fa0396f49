"""Models package — re-exports all models."""

from app.models.base import Base, utc_now
from app.models.jobs import Job, JobType, JobStatus, AGENT_SCOPED_TYPES
from app.models.agents import Agent
from app.models.buffer import BufferEntry, BufferStatus
from app.models.logs import LogEntry

__all__ = [
    "Base",
    "utc_now",
    "Job",
    "JobType",
    "JobStatus",
    "AGENT_SCOPED_TYPES",
    "Agent",
    "BufferEntry",
    "BufferStatus",
    "LogEntry",
]
