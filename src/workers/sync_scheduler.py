"""
Sync scheduler worker - runs reconciliation for every enabled platform on a
fixed interval (default every 6 hours).

The last run timestamp lives in Redis so a restart does not trigger an
immediate full sync; without Redis the scheduler falls back to running on
start and then every interval.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from src.config import get_settings
from src.services.reconciliation import sync_all_platforms
from src.utils.alerting import AlertType, send_alert

logger = logging.getLogger(__name__)

CHECK_INTERVAL_SECONDS = 300
LAST_RUN_KEY = "paysync:sync_scheduler:last_run"
HEARTBEAT_KEY = "paysync:worker_health:sync_scheduler"


async def _heartbeat():
    """Store heartbeat timestamp in Redis."""
    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.set(HEARTBEAT_KEY, datetime.now(timezone.utc).isoformat(), ex=900)
    except Exception as e:
        logger.debug("Heartbeat write failed: %s", str(e))


async def _get_last_run() -> Optional[datetime]:
    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()
        value = await redis.get(LAST_RUN_KEY)
        if value:
            if isinstance(value, bytes):
                value = value.decode()
            return datetime.fromisoformat(value)
    except Exception as e:
        logger.debug("Could not read last sync run: %s", str(e))
    return None


async def _set_last_run(when: datetime) -> None:
    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.set(LAST_RUN_KEY, when.isoformat())
    except Exception as e:
        logger.debug("Could not store last sync run: %s", str(e))


def is_due(last_run: Optional[datetime], now: datetime, interval_hours: int) -> bool:
    if last_run is None:
        return True
    return (now - last_run).total_seconds() >= interval_hours * 3600


async def run_sync_scheduler():
    """Main loop - check every 5 minutes whether a full sync is due."""
    settings = get_settings()
    logger.info("Sync scheduler started (every %dh)", settings.sync_interval_hours)
    local_last_run: Optional[datetime] = None

    while True:
        try:
            now = datetime.now(timezone.utc)
            last_run = await _get_last_run() or local_last_run
            if is_due(last_run, now, settings.sync_interval_hours):
                local_last_run = now
                await _set_last_run(now)
                summary = await sync_all_platforms()
                logger.info("Scheduled sync finished for %d platforms", len(summary))
        except Exception as e:
            logger.error("Sync scheduler error: %s", str(e))
            await send_alert(
                AlertType.WORKER_CYCLE_ERROR,
                f"Sync scheduler error: {str(e)}",
                dedup_key="sync_scheduler",
            )

        await _heartbeat()
        await asyncio.sleep(CHECK_INTERVAL_SECONDS)
