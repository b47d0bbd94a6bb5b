"""
Operational alerting - sends alerts on important pipeline events.

Alert channels:
1. Structured log (always)
2. Webhook (configurable) - Discord/Slack URL via ALERT_WEBHOOK_URL env var

Rate limiting: per-type cooldowns stored in Redis (SET NX EX) so a
persistent condition does not produce an alert storm. Falls back to an
in-memory cooldown map when Redis is unavailable.
"""
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300  # 5 minutes (default)

# Reconciliation runs every few hours; one alert per platform run is enough
ALERT_COOLDOWN_OVERRIDES: dict[str, int] = {
    "sync_missing_records": 3600,
    "sync_failed": 3600,
}

_local_cooldowns: dict[str, float] = {}  # cooldown key -> expiry (monotonic)


def _get_cooldown_seconds(alert_type: str) -> int:
    return ALERT_COOLDOWN_OVERRIDES.get(alert_type, ALERT_COOLDOWN_SECONDS)


class AlertType:
    """Alert type constants."""
    WEBHOOK_PROCESSING_FAILED = "webhook_processing_failed"
    SYNC_MISSING_RECORDS = "sync_missing_records"
    SYNC_FAILED = "sync_failed"
    PROVIDER_NOT_CONFIGURED = "provider_not_configured"
    WORKER_CYCLE_ERROR = "worker_cycle_error"


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    extra: Optional[dict] = None,
    dedup_key: Optional[str] = None,
) -> None:
    """
    Send an alert through all configured channels.
    Rate-limited per alert type (and optional dedup_key, e.g. a platform slug).
    """
    cooldown_key = f"{alert_type}:{dedup_key}" if dedup_key else alert_type
    if not await _acquire_cooldown(alert_type, cooldown_key):
        return

    from src.utils.logging import get_correlation_id
    cid = correlation_id or get_correlation_id()

    log_message = f"ALERT [{alert_type}]: {message}"
    if cid:
        log_message += f" (correlation_id={cid})"

    if severity == "critical":
        logger.critical(log_message)
    elif severity == "warning":
        logger.warning(log_message)
    else:
        logger.error(log_message)

    await _send_webhook_alert(alert_type, message, severity, cid, extra)


async def _acquire_cooldown(alert_type: str, cooldown_key: str) -> bool:
    """Atomically check-and-set the cooldown. Returns True if the alert should be sent."""
    cooldown = _get_cooldown_seconds(alert_type)

    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()
        acquired = await redis.set(
            f"paysync:alert_cooldown:{cooldown_key}", "1", nx=True, ex=cooldown
        )
        return bool(acquired)
    except Exception as e:
        logger.debug("Alert cooldown Redis check failed, using in-memory fallback: %s", str(e))
        now = time.monotonic()
        if now < _local_cooldowns.get(cooldown_key, 0):
            return False
        _local_cooldowns[cooldown_key] = now + cooldown
        return True


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    severity: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
) -> None:
    """Send alert to configured webhook (Discord/Slack)."""
    try:
        from src.config import get_settings
        webhook_url = get_settings().alert_webhook_url
        if not webhook_url:
            return

        import httpx

        prefix = {"critical": "[CRITICAL]", "error": "[ERROR]", "warning": "[WARN]"}.get(severity, "[INFO]")
        content = f"{prefix} **{alert_type}**\n{message}"
        if correlation_id:
            content += f"\n`correlation_id: {correlation_id}`"
        if extra:
            for key, val in extra.items():
                content += f"\n`{key}: {val}`"

        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        # Alert delivery must never break the pipeline
        logger.warning("Failed to send webhook alert: %s", str(e))
