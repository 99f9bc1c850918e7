"""
Tests for src/api/health.py - liveness, readiness and worker heartbeats.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from fastapi import Response

from src.api.health import health_check, readiness_check, workers_check


class TestHealthCheck:
    async def test_returns_healthy(self):
        result = await health_check()
        assert result["status"] == "healthy"
        assert result["version"] == "1.0.0"
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None


class TestReadinessCheck:
    async def test_all_healthy_returns_ready(self, db):
        response = Response()
        result = await readiness_check(response, db=db)
        assert result["status"] == "ready"
        assert result["checks"] == {"database": True, "redis": True}
        assert response.status_code == 200

    async def test_redis_down_is_degraded(self, db, mock_redis):
        mock_redis.ping = AsyncMock(side_effect=ConnectionError("refused"))
        response = Response()
        result = await readiness_check(response, db=db)
        assert result["status"] == "degraded"
        assert result["checks"] == {"database": True, "redis": False}
        assert response.status_code == 200

    async def test_database_down_is_not_ready(self):
        broken_db = AsyncMock()
        broken_db.execute = AsyncMock(side_effect=Exception("connection lost"))
        response = Response()
        result = await readiness_check(response, db=broken_db)
        assert result["status"] == "not_ready"
        assert result["checks"]["database"] is False
        assert response.status_code == 503


class TestWorkersCheck:
    async def test_missing_heartbeat_unhealthy(self, mock_redis):
        mock_redis.get = AsyncMock(return_value=None)
        result = await workers_check()
        assert result["healthy"] is False
        assert result["workers"]["webhook_retry_worker"]["last_heartbeat"] is None

    async def test_fresh_heartbeat_healthy(self, mock_redis):
        stamp = datetime.now(timezone.utc).isoformat()
        mock_redis.get = AsyncMock(return_value=stamp)
        result = await workers_check()
        assert result["healthy"] is True
        assert result["workers"]["webhook_retry_worker"]["last_heartbeat"] == stamp
        assert result["workers"]["webhook_retry_worker"]["age_seconds"] < 60
        assert result["background_tasks"] == 0

    async def test_stale_heartbeat_unhealthy(self, mock_redis):
        stamp = (datetime.now(timezone.utc) - timedelta(minutes=4)).isoformat()
        mock_redis.get = AsyncMock(return_value=stamp)
        result = await workers_check()
        assert result["healthy"] is False
        assert result["workers"]["webhook_retry_worker"]["age_seconds"] >= 240

    async def test_redis_unavailable(self):
        with patch("src.utils.heartbeat.get_redis", AsyncMock(side_effect=ConnectionError("down"))):
            result = await workers_check()
        assert result["healthy"] is True
        assert "note" in result
