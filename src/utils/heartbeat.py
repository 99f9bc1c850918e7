"""
Worker heartbeats in Redis.
Workers record a timestamp after every cycle; /health/workers reads them back.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

HEARTBEAT_KEY_PREFIX = "ticketbridge:worker_health:"
HEARTBEAT_TTL_SECONDS = 300

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from src.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None


async def record_heartbeat(worker_name: str) -> None:
    """Store heartbeat timestamp. Redis being down must not stop the worker."""
    try:
        redis = await get_redis()
        await redis.set(
            f"{HEARTBEAT_KEY_PREFIX}{worker_name}",
            datetime.now(timezone.utc).isoformat(),
            ex=HEARTBEAT_TTL_SECONDS,
        )
    except Exception as e:
        logger.warning("Heartbeat write failed for %s: %s", worker_name, str(e))


async def get_heartbeat(worker_name: str) -> Optional[datetime]:
    """Last heartbeat of a worker, or None if missing/expired."""
    redis = await get_redis()
    value = await redis.get(f"{HEARTBEAT_KEY_PREFIX}{worker_name}")
    if not value:
        return None
    return datetime.fromisoformat(value)
