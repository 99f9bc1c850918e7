"""
Tests for src/utils/backoff.py - webhook retry schedule.
"""
from datetime import datetime, timedelta, timezone

from src.utils.backoff import backoff_delay_seconds, calculate_backoff


NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestBackoffDelaySeconds:
    def test_doubles_per_attempt(self):
        assert [backoff_delay_seconds(n) for n in range(1, 6)] == [2, 4, 8, 16, 32]

    def test_sixth_attempt_gives_up(self):
        assert backoff_delay_seconds(6) is None

    def test_custom_limits(self):
        assert backoff_delay_seconds(2, max_retries=2, base_seconds=3) == 9
        assert backoff_delay_seconds(3, max_retries=2, base_seconds=3) is None


class TestCalculateBackoff:
    def test_first_failure_retries_in_two_seconds(self):
        assert calculate_backoff(1, NOW) == NOW + timedelta(seconds=2)

    def test_fifth_failure_still_scheduled(self):
        assert calculate_backoff(5, NOW) == NOW + timedelta(seconds=32)

    def test_exhausted_returns_none(self):
        assert calculate_backoff(6, NOW) is None

    def test_defaults_to_current_time(self):
        before = datetime.now(timezone.utc)
        result = calculate_backoff(1)
        assert result >= before + timedelta(seconds=2)
        assert result.tzinfo is not None
