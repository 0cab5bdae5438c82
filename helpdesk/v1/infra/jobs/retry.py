"""
Retry policy with exponential backoff.
"""

from dataclasses import dataclass

from helpdesk.config.settings import Settings
from helpdesk.v1.infra.jobs.schemas import JobBase

DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 300_000  # 5 minutes


def calculate_backoff_delay(
    attempt: int,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
) -> int:
    """
    Exponential backoff in milliseconds: ``base * 2^attempt``, clamped.

    ``attempt`` is the 0-indexed attempt count before the retry being
    scheduled. Negative values are treated as 0.
    """
    attempt = max(0, attempt)
    return min(base_delay_ms * (2**attempt), max_delay_ms)


@dataclass(frozen=True)
class RetryPolicy:
    """Deterministic retry decisions for the job lifecycle manager."""

    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_delay_ms=settings.job_backoff_base_ms,
            max_delay_ms=settings.job_max_backoff_ms,
        )

    def backoff(self, attempt: int) -> int:
        return calculate_backoff_delay(attempt, self.base_delay_ms, self.max_delay_ms)

    def should_retry(self, job: JobBase) -> bool:
        return job.attempts < job.max_attempts

    def is_max_attempts_exceeded(self, job: JobBase) -> bool:
        return job.attempts >= job.max_attempts

    def retry_delay(self, job: JobBase) -> int:
        """Delay before the next attempt of a job that has just failed."""
        return self.backoff(job.attempts - 1)
