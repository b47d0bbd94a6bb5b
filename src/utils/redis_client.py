"""
Shared async Redis connection (lazily initialized).
Used for work-queue wake-ups, worker heartbeats, alert cooldowns and the
metrics-recalculation signal. Redis is never the source of truth.
"""
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
