"""
Exponential backoff schedule for outbound webhook deliveries.

attempts is the number of attempts already made (including the one that just failed):
1 -> +2s, 2 -> +4s, 3 -> +8s, 4 -> +16s, 5 -> +32s, 6 -> give up.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_SECONDS = 2


def backoff_delay_seconds(
    attempts: int,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_seconds: int = DEFAULT_BASE_SECONDS,
) -> Optional[int]:
    """Seconds to wait before the next attempt, or None once retries are exhausted."""
    if attempts > max_retries:
        return None
    return base_seconds ** attempts


def calculate_backoff(
    attempts: int,
    now: Optional[datetime] = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_seconds: int = DEFAULT_BASE_SECONDS,
) -> Optional[datetime]:
    """Absolute time of the next attempt, or None when the delivery should be marked failed."""
    delay = backoff_delay_seconds(attempts, max_retries, base_seconds)
    if delay is None:
        return None
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=delay)
