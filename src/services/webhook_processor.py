"""
Webhook event processor - runs one attempt for one stored event.

State machine: pending -> processing -> processed | pending (retry) | failed.
Each attempt is one database transaction; a failure rolls back every partial
write and either schedules a retry with capped exponential backoff or marks
the event terminally failed.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.models.platform import Platform
from src.models.webhook_event import WebhookEvent
from src.services.event_store import is_synthetic
from src.services.metrics_signal import emit_metrics_recalculation
from src.services.webhook_handlers import HANDLED_PLATFORMS, SYNC_DISPATCH_KEY, get_handler
from src.utils.alerting import AlertType, send_alert
from src.utils.errors import WebhookEventNotFoundError
from src.utils.logging import generate_correlation_id, set_correlation_id
from src.utils.timezone import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ProcessingOutcome:
    event_id: uuid.UUID
    status: str  # processed, pending, failed
    retry_in_seconds: Optional[float] = None
    error: Optional[str] = None

    @property
    def should_retry(self) -> bool:
        return self.status == "pending" and self.retry_in_seconds is not None


def compute_backoff_delay(
    retry_count: int,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
) -> float:
    """min(base * 2**retry_count, cap) seconds; non-decreasing in retry_count."""
    settings = get_settings()
    if base_delay is None:
        base_delay = settings.webhook_retry_base_delay_seconds
    if max_delay is None:
        max_delay = settings.webhook_retry_max_delay_seconds
    return min(base_delay * (2 ** max(retry_count, 0)), max_delay)


async def _mark_failed(db: AsyncSession, event: WebhookEvent, message: str) -> ProcessingOutcome:
    event.status = "failed"
    event.error_message = message
    event.processed_at = utc_now()
    await db.commit()
    return ProcessingOutcome(event_id=event.id, status="failed", error=message)


async def process_webhook_event(db: AsyncSession, event_id: uuid.UUID) -> ProcessingOutcome:
    """
    Process one webhook event.

    Raises:
        WebhookEventNotFoundError: the event row does not exist (never retried).
    """
    event = await db.get(WebhookEvent, event_id)
    if event is None:
        raise WebhookEventNotFoundError(f"Webhook event not found: {event_id}")

    if event.status in ("processed", "failed"):
        logger.info("Webhook event %s already %s - skipping", str(event.id)[:8], event.status)
        return ProcessingOutcome(event_id=event.id, status=event.status, error=event.error_message)

    set_correlation_id(event.correlation_id or generate_correlation_id())
    platform = await db.get(Platform, event.platform_id)
    platform_slug = platform.slug if platform else None
    platform_id = event.platform_id

    event.status = "processing"
    await db.commit()

    if platform is None or platform_slug not in HANDLED_PLATFORMS:
        logger.error("Webhook event %s has unknown platform %s", str(event.id)[:8], platform_slug)
        return await _mark_failed(db, event, f"Unknown platform: {platform_slug}")

    synthetic = is_synthetic(event)
    dispatch_key = SYNC_DISPATCH_KEY if synthetic else platform_slug
    handler = get_handler(dispatch_key, event.event_type)

    if handler is None:
        logger.info(
            "Unhandled event type %s for %s - marking processed",
            event.event_type, dispatch_key,
        )
        event.status = "processed"
        event.processed_at = utc_now()
        await db.commit()
        return ProcessingOutcome(event_id=event.id, status="processed")

    try:
        result = await handler(db, platform, event.payload or {})
        event.status = "processed"
        event.processed_at = utc_now()
        event.error_message = None
        await db.commit()
    except Exception as e:
        await db.rollback()
        return await _handle_failure(db, event_id, platform_slug, e)

    logger.info(
        "Webhook event processed: platform=%s type=%s id=%s persisted=%s",
        platform_slug, event.event_type, str(event.id)[:8], result.persisted,
        extra={"platform": platform_slug, "event_id": str(event.id), "event_type": event.event_type},
    )
    if result.persisted:
        await emit_metrics_recalculation(platform_id)
    return ProcessingOutcome(event_id=event_id, status="processed")


async def _handle_failure(
    db: AsyncSession, event_id: uuid.UUID, platform_slug: str, error: Exception
) -> ProcessingOutcome:
    settings = get_settings()
    max_retries = settings.webhook_max_retries
    error_msg = str(error) or error.__class__.__name__

    # Rollback expired the instance; reload the committed state
    event = await db.get(WebhookEvent, event_id, populate_existing=True)

    if event.retry_count < max_retries:
        event.retry_count += 1
        event.status = "pending"
        event.error_message = error_msg
        await db.commit()
        delay = compute_backoff_delay(event.retry_count)
        logger.warning(
            "Webhook event retry %d/%d: id=%s type=%s backoff=%.1fs error=%s",
            event.retry_count, max_retries, str(event.id)[:8], event.event_type, delay, error_msg,
        )
        return ProcessingOutcome(
            event_id=event.id, status="pending", retry_in_seconds=delay, error=error_msg
        )

    message = f"Max retries ({max_retries}) exceeded: {error_msg}"
    logger.error(
        "Webhook event failed permanently: id=%s type=%s error=%s",
        str(event.id)[:8], event.event_type, error_msg,
    )
    outcome = await _mark_failed(db, event, message)
    await send_alert(
        AlertType.WEBHOOK_PROCESSING_FAILED,
        f"Webhook event {event.id} ({platform_slug} {event.event_type}) failed: {error_msg}",
        correlation_id=event.correlation_id,
        extra={"event_id": str(event.id), "platform": platform_slug},
        dedup_key=f"webhook_failed:{platform_slug}:{event.event_type}",
    )
    return outcome
