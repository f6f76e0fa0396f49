"""
Retry policy: backoff schedule and dead-letter ceiling.
"""
from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class RetryPolicy:
    base_seconds: int = 30
    max_seconds: int = 3600

    def backoff(self, attempts: int) -> timedelta:
        """
        Delay before the next attempt after ``attempts`` failures.

        30s, 60s, 120s, 240s, ... capped at max_seconds. Non-decreasing in
        attempts.
        """
        if attempts < 1:
            attempts = 1
        # Cap the exponent so huge attempt counts don't build huge ints
        exponent = min(attempts - 1, 32)
        seconds = min(self.base_seconds * (2 ** exponent), self.max_seconds)
        return timedelta(seconds=seconds)

    @staticmethod
    def should_dead_letter(attempts: int, max_attempts: int, permanent: bool = False) -> bool:
        return permanent or attempts >= max_attempts
