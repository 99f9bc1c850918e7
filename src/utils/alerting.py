"""
Alerts for conditions that need an operator: a delivery that used up its
retries, a ledger conflict with no ticket behind it, a retry cycle that crashed.

Every alert is logged. When ALERT_WEBHOOK_URL is set it is also posted there
(Discord/Slack "content" payload). Each alert type fires at most once per
cooldown window; the window is claimed in Redis with SET NX EX so several app
instances share it, and falls back to process memory when Redis is down.
"""
import logging
import time
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 300
ALERT_POST_TIMEOUT_SECONDS = 5.0


class AlertType:
    WEBHOOK_DELIVERY_FAILED = "webhook_delivery_failed"
    LEDGER_INCONSISTENCY = "ledger_inconsistency"
    RETRY_WORKER_ERROR = "retry_worker_error"


# A down receiver fails every delivery; one alert per 15 minutes is enough
COOLDOWNS: dict[str, int] = {
    AlertType.WEBHOOK_DELIVERY_FAILED: 900,
}

_memory_cooldowns: dict[str, float] = {}


def _cooldown_key(alert_type: str) -> str:
    return f"ticketbridge:alert_cooldown:{alert_type}"


async def _claim_window(alert_type: str) -> bool:
    """True if this caller owns the current cooldown window for alert_type."""
    seconds = COOLDOWNS.get(alert_type, DEFAULT_COOLDOWN_SECONDS)
    try:
        from src.utils.heartbeat import get_redis
        redis = await get_redis()
        return bool(await redis.set(_cooldown_key(alert_type), "1", nx=True, ex=seconds))
    except Exception as e:
        logger.debug("Redis unavailable for alert cooldown (%s), using local window", str(e))

    now = time.monotonic()
    if _memory_cooldowns.get(alert_type, 0.0) > now:
        return False
    _memory_cooldowns[alert_type] = now + seconds
    return True


def format_alert(
    alert_type: str,
    message: str,
    severity: str,
    correlation_id: Optional[str] = None,
    extra: Optional[dict] = None,
) -> str:
    lines = [f"[{severity.upper()}] **{alert_type}**", message]
    details = dict(extra or {})
    if correlation_id:
        details = {"correlation_id": correlation_id, **details}
    lines.extend(f"`{key}: {value}`" for key, value in details.items())
    return "\n".join(lines)


async def _post_to_channel(url: str, content: str) -> None:
    try:
        async with httpx.AsyncClient(timeout=ALERT_POST_TIMEOUT_SECONDS) as client:
            response = await client.post(url, json={"content": content})
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Alert webhook post failed: %s", str(e))


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    extra: Optional[dict] = None,
) -> None:
    """Log the alert and forward it to the alert channel, unless its type is cooling down."""
    if not await _claim_window(alert_type):
        logger.debug("Alert %s suppressed (cooldown)", alert_type)
        return

    from src.utils.logging import get_correlation_id
    cid = correlation_id or get_correlation_id()

    level = logging.CRITICAL if severity == "critical" else logging.ERROR
    logger.log(level, "ALERT [%s]: %s", alert_type, message, extra={"event_type": alert_type})

    from src.config import get_settings
    url = get_settings().alert_webhook_url
    if url:
        await _post_to_channel(url, format_alert(alert_type, message, severity, cid, extra))
