"""
Metrics recalculation signal - tells the external metrics engine that a
platform's daily figures are stale after new payment data was persisted.

Fire-and-forget: failures are logged and never affect event processing.
"""
import json
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

METRICS_QUEUE_KEY = "paysync:metrics:recalculate"


async def emit_metrics_recalculation(platform_id: str) -> bool:
    """
    Push {"platform_id", "date"} onto the metrics queue.
    Returns True if the signal was delivered.
    """
    message = {
        "platform_id": str(platform_id),
        "date": datetime.now(timezone.utc).date().isoformat(),
    }
    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.lpush(METRICS_QUEUE_KEY, json.dumps(message))
        logger.debug("Metrics recalculation queued for platform %s", str(platform_id)[:8])
        return True
    except Exception as e:
        logger.warning("Failed to queue metrics recalculation: %s", str(e))
        return False
