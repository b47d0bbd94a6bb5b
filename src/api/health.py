"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis)
- GET /health/deep  - deep check (DB + Redis + worker heartbeats + event backlog)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, text
from src.database import get_db
from src.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

APP_VERSION = "1.0.0"

WORKER_HEARTBEAT_KEYS = [
    "paysync:worker_health:webhook_worker",
    "paysync:worker_health:sync_scheduler",
]


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check - verifies database and Redis connectivity.
    Used by the orchestrator to determine if the app can serve traffic.
    """
    database = await _check_database(db)
    redis = await _check_redis()
    checks = {"database": database["healthy"], "redis": redis["healthy"]}

    all_healthy = all(checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/deep")
async def deep_health_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Deep health check - checks ALL dependencies.

    Checks:
    - PostgreSQL: SELECT 1
    - Redis: PING
    - Workers: heartbeat freshness
    - Event backlog: pending / failed webhook events
    """
    now = datetime.now(timezone.utc)
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
        "workers": await _check_workers(),
        "webhook_events": await _check_event_backlog(db),
    }

    critical = ["database", "redis"]
    critical_healthy = all(checks.get(k, {}).get("healthy", False) for k in critical)
    all_healthy = all(c.get("healthy", False) for c in checks.values())

    if all_healthy:
        status = "healthy"
    elif critical_healthy:
        status = "degraded"
    else:
        status = "unhealthy"

    return {
        "status": status,
        "checks": checks,
        "timestamp": now.isoformat(),
        "version": APP_VERSION,
    }


async def _check_database(db: AsyncSession) -> dict:
    """Check PostgreSQL connectivity."""
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        return {"healthy": True}
    except Exception as e:
        logger.error("Health: database check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_redis() -> dict:
    """Check Redis connectivity."""
    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()
        return {"healthy": True}
    except Exception as e:
        logger.warning("Health: Redis check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_workers() -> dict:
    """Check worker heartbeat timestamps in Redis."""
    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()

        workers = {}
        for key in WORKER_HEARTBEAT_KEYS:
            name = key.split(":")[-1]
            heartbeat = await redis.get(key)
            workers[name] = {
                "healthy": heartbeat is not None,
                "last_heartbeat": heartbeat,
            }

        all_healthy = all(w["healthy"] for w in workers.values())
        return {"healthy": all_healthy, "workers": workers}
    except Exception as e:
        logger.debug("Health: worker heartbeat check failed: %s", str(e))
        return {"healthy": True, "note": "Unable to check worker heartbeats"}


async def _check_event_backlog(db: AsyncSession) -> dict:
    """Failed events need an operator; a pending backlog alone is informational."""
    try:
        result = await db.execute(
            select(WebhookEvent.status, func.count(WebhookEvent.id))
            .where(WebhookEvent.status.in_(["pending", "failed"]))
            .group_by(WebhookEvent.status)
        )
        counts = {status: count for status, count in result.all()}
        return {
            "healthy": counts.get("failed", 0) == 0,
            "pending": counts.get("pending", 0),
            "failed": counts.get("failed", 0),
        }
    except Exception as e:
        logger.error("Health: event backlog check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}
