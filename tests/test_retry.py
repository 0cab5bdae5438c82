"""Tests for retry backoff and attempt accounting"""

from datetime import UTC, datetime

import pytest

from helpdesk.config.settings import Settings
from helpdesk.v1.infra.jobs.retry import RetryPolicy, calculate_backoff_delay
from helpdesk.v1.infra.jobs.schemas import SendEmailJob


def _job(attempts: int, max_attempts: int = 3) -> SendEmailJob:
    return SendEmailJob(
        id="job-1",
        attempts=attempts,
        max_attempts=max_attempts,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        data={"to": "a@example.test", "subject": "Hi", "html": "<p>Hi</p>"},
    )


class TestBackoff:
    @pytest.mark.parametrize(
        "attempt,expected",
        [(0, 1000), (1, 2000), (2, 4000), (3, 8000), (10, 300_000)],
    )
    def test_exponential_with_clamp(self, attempt, expected):
        assert calculate_backoff_delay(attempt) == expected

    def test_negative_attempt_treated_as_zero(self):
        assert calculate_backoff_delay(-3) == 1000

    def test_custom_base_and_ceiling(self):
        assert calculate_backoff_delay(2, base_delay_ms=500, max_delay_ms=1500) == 1500
        assert calculate_backoff_delay(1, base_delay_ms=500, max_delay_ms=1500) == 1000


class TestRetryPolicy:
    def test_retry_delay_uses_attempt_before_this_one(self):
        policy = RetryPolicy()
        assert policy.retry_delay(_job(attempts=1)) == 1000
        assert policy.retry_delay(_job(attempts=2)) == 2000

    def test_max_attempts_boundaries(self):
        policy = RetryPolicy()
        assert policy.should_retry(_job(attempts=2, max_attempts=3))
        assert not policy.is_max_attempts_exceeded(_job(attempts=2, max_attempts=3))
        assert policy.is_max_attempts_exceeded(_job(attempts=3, max_attempts=3))
        assert not policy.should_retry(_job(attempts=3, max_attempts=3))

    def test_from_settings(self):
        settings = Settings(
            _env_file=None, job_backoff_base_ms=250, job_max_backoff_ms=1000
        )
        policy = RetryPolicy.from_settings(settings)
        assert policy.backoff(0) == 250
        assert policy.backoff(5) == 1000
