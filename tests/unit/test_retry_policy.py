"""
Unit tests for the retry policy and failure taxonomy.

Pure logic, no database.
"""
from datetime import timedelta


class TestBackoff:
    def test_doubles_from_base(self):
        from app.services.jobs.policy import RetryPolicy

        policy = RetryPolicy(base_seconds=30, max_seconds=3600)
        assert [policy.backoff(n).total_seconds() for n in range(1, 6)] == [30, 60, 120, 240, 480]

    def test_capped_at_max(self):
        from app.services.jobs.policy import RetryPolicy

        policy = RetryPolicy(base_seconds=30, max_seconds=3600)
        assert policy.backoff(8) == timedelta(seconds=3600)
        assert policy.backoff(10_000) == timedelta(seconds=3600)

    def test_non_decreasing(self):
        """A later retry must never come sooner than an earlier one."""
        from app.services.jobs.policy import RetryPolicy

        policy = RetryPolicy(base_seconds=7, max_seconds=900)
        delays = [policy.backoff(n) for n in range(0, 100)]
        assert all(a <= b for a, b in zip(delays, delays[1:]))

    def test_zero_attempts_treated_as_first(self):
        from app.services.jobs.policy import RetryPolicy

        assert RetryPolicy().backoff(0) == RetryPolicy().backoff(1)


class TestDeadLetterDecision:
    def test_ceiling_reached(self):
        from app.services.jobs.policy import RetryPolicy

        assert not RetryPolicy.should_dead_letter(4, 5)
        assert RetryPolicy.should_dead_letter(5, 5)
        assert RetryPolicy.should_dead_letter(6, 5)

    def test_permanent_short_circuits(self):
        from app.services.jobs.policy import RetryPolicy

        assert RetryPolicy.should_dead_letter(1, 5, permanent=True)


class TestErrorTaxonomy:
    def test_permanent_flags(self):
        from app.services.jobs.errors import (
            InvalidPayloadError,
            JobError,
            PermanentJobError,
            TransientJobError,
            UnknownJobTypeError,
            is_permanent,
        )

        assert is_permanent(PermanentJobError("x"))
        assert is_permanent(UnknownJobTypeError("x"))
        assert is_permanent(InvalidPayloadError("x"))
        assert not is_permanent(TransientJobError("x"))
        assert not is_permanent(JobError("x"))
        assert is_permanent(JobError("x", permanent=True))

    def test_plain_exceptions_are_transient(self):
        from app.services.jobs.errors import is_permanent

        assert not is_permanent(RuntimeError("boom"))
        assert not is_permanent(TimeoutError())

    def test_pipeline_errors(self):
        from app.services.pipeline.client import ModerationRejected, PipelineError
        from app.services.jobs.errors import is_permanent

        assert not is_permanent(PipelineError("503"))
        assert is_permanent(PipelineError("400", status_code=400, permanent=True))
        assert is_permanent(ModerationRejected("nope"))
