"""
Probes for the load balancer and monitoring.

/health is liveness only. /health/ready answers 503 when the database is
unreachable; Redis only backs heartbeats and alert cooldowns, so losing it
reports "degraded" but stays 200. /health/workers reports how long ago the
retry worker last finished a cycle.
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.utils import background
from src.workers.webhook_retry import WORKER_NAME as RETRY_WORKER

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

APP_VERSION = "1.0.0"
MONITORED_WORKERS = (RETRY_WORKER,)
# A few missed poll cycles before a worker counts as stalled
STALE_HEARTBEAT_SECONDS = 120


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("")
async def health_check():
    return {"status": "healthy", "version": APP_VERSION, "timestamp": _now()}


async def _database_ok(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Readiness: database unreachable: %s", str(e))
        return False


async def _redis_ok() -> bool:
    from src.utils.heartbeat import get_redis
    try:
        await (await get_redis()).ping()
        return True
    except Exception as e:
        logger.warning("Readiness: redis unreachable: %s", str(e))
        return False


@router.get("/ready")
async def readiness_check(response: Response, db: AsyncSession = Depends(get_db)):
    checks = {"database": await _database_ok(db), "redis": await _redis_ok()}

    if not checks["database"]:
        response.status_code = 503
        status = "not_ready"
    elif not checks["redis"]:
        status = "degraded"
    else:
        status = "ready"
    return {"status": status, "checks": checks, "timestamp": _now()}


def _worker_state(last_seen) -> dict:
    if last_seen is None:
        return {"healthy": False, "last_heartbeat": None, "age_seconds": None}
    age = (datetime.now(timezone.utc) - last_seen).total_seconds()
    return {
        "healthy": age <= STALE_HEARTBEAT_SECONDS,
        "last_heartbeat": last_seen.isoformat(),
        "age_seconds": round(age, 1),
    }


@router.get("/workers")
async def workers_check():
    from src.utils.heartbeat import get_heartbeat

    try:
        workers = {name: _worker_state(await get_heartbeat(name)) for name in MONITORED_WORKERS}
    except Exception as e:
        # Heartbeats live in Redis; without it worker state is unknown, not failed
        logger.warning("Worker heartbeats unavailable: %s", str(e))
        return {
            "healthy": True,
            "note": "Worker heartbeats unavailable",
            "background_tasks": background.pending_count(),
        }

    return {
        "healthy": all(w["healthy"] for w in workers.values()),
        "workers": workers,
        "background_tasks": background.pending_count(),
    }
