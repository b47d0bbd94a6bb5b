"""
Tests for src/api/health.py - health check endpoints (liveness, readiness, deep).
"""
from datetime import datetime
from unittest.mock import AsyncMock, patch

from src.api.health import (
    APP_VERSION,
    _check_event_backlog,
    _check_workers,
    deep_health_check,
    health_check,
    readiness_check,
)
from src.models.webhook_event import WebhookEvent


async def _event(db, platform, status, external_id):
    db.add(WebhookEvent(
        platform_id=platform.id,
        external_event_id=external_id,
        event_type="invoice.paid",
        payload={},
        status=status,
    ))
    await db.commit()


class TestHealthCheck:
    async def test_returns_healthy(self):
        result = await health_check()
        assert result["status"] == "healthy"
        assert result["version"] == APP_VERSION
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None


class TestReadinessCheck:
    async def test_all_healthy_returns_ready(self, db):
        result = await readiness_check(db)
        assert result["status"] == "ready"
        assert result["checks"] == {"database": True, "redis": True}

    async def test_redis_down_is_degraded(self, db, mock_redis):
        mock_redis.ping.side_effect = ConnectionError("refused")
        result = await readiness_check(db)
        assert result["status"] == "degraded"
        assert result["checks"]["redis"] is False

    async def test_database_down_is_degraded(self):
        broken_db = AsyncMock()
        broken_db.execute = AsyncMock(side_effect=Exception("connection refused"))
        result = await readiness_check(broken_db)
        assert result["checks"]["database"] is False


class TestWorkerHeartbeats:
    async def test_missing_heartbeat_unhealthy(self, mock_redis):
        mock_redis.get = AsyncMock(side_effect=["2026-03-01T12:00:00+00:00", None])
        result = await _check_workers()
        assert result["healthy"] is False
        assert result["workers"]["webhook_worker"]["healthy"] is True
        assert result["workers"]["sync_scheduler"]["healthy"] is False

    async def test_redis_unavailable_is_not_fatal(self):
        with patch("src.utils.redis_client.get_redis", new_callable=AsyncMock,
                   side_effect=ConnectionError("down")):
            result = await _check_workers()
        assert result["healthy"] is True


class TestEventBacklog:
    async def test_counts_pending_and_failed(self, db, stripe_platform):
        await _event(db, stripe_platform, "pending", "e1")
        await _event(db, stripe_platform, "pending", "e2")
        await _event(db, stripe_platform, "processed", "e3")

        result = await _check_event_backlog(db)
        assert result == {"healthy": True, "pending": 2, "failed": 0}

    async def test_failed_events_unhealthy(self, db, stripe_platform):
        await _event(db, stripe_platform, "failed", "e1")
        result = await _check_event_backlog(db)
        assert result["healthy"] is False
        assert result["failed"] == 1


class TestDeepHealthCheck:
    async def test_healthy(self, db, mock_redis):
        mock_redis.get = AsyncMock(return_value="2026-03-01T12:00:00+00:00")
        result = await deep_health_check(db)
        assert result["status"] == "healthy"
        assert set(result["checks"]) == {"database", "redis", "workers", "webhook_events"}

    async def test_stale_workers_degraded(self, db, mock_redis):
        mock_redis.get = AsyncMock(return_value=None)
        result = await deep_health_check(db)
        assert result["status"] == "degraded"

    async def test_redis_down_unhealthy(self, db, mock_redis):
        mock_redis.ping.side_effect = ConnectionError("refused")
        result = await deep_health_check(db)
        assert result["status"] == "unhealthy"
