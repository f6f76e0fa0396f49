from app.services.jobs.errors import (
    InvalidPayloadError,
    JobError,
    JobSkipped,
    PermanentJobError,
    StoreUnavailableError,
    TransientJobError,
    UnknownJobTypeError,
)
from app.services.jobs.policy import RetryPolicy
from app.services.jobs.store import JobStore

__all__ = [
    "InvalidPayloadError",
    "JobError",
    "JobSkipped",
    "JobStore",
    "PermanentJobError",
    "RetryPolicy",
    "StoreUnavailableError",
    "TransientJobError",
    "UnknownJobTypeError",
]
