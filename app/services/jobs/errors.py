"""
Job failure taxonomy.

Handlers signal "retrying cannot help" by raising an error whose
``permanent`` flag is True. Anything else a handler raises is treated as
transient and goes through the backoff path.
"""


class JobError(Exception):
    """Base class for errors raised by job handlers."""

    permanent = False

    def __init__(self, message: str = "", permanent: bool = None):
        super().__init__(message)
        if permanent is not None:
            self.permanent = permanent


class TransientJobError(JobError):
    """Timeouts, rate limits, flaky upstreams — retry with backoff."""
    permanent = False


class PermanentJobError(JobError):
    """Dead-letter immediately; no retry can change the outcome."""
    permanent = True


class UnknownJobTypeError(PermanentJobError):
    pass


class InvalidPayloadError(PermanentJobError):
    pass


class JobSkipped(Exception):
    """
    Raised when a job no longer applies (agent deactivated or unscheduled).
    Resolved as succeeded with a skip note, never counted as a failure.
    """


class StoreUnavailableError(Exception):
    """The job store could not be reached while claiming."""


def is_permanent(exc: BaseException) -> bool:
    return bool(getattr(exc, "permanent", False))
