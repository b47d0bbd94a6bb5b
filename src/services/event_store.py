"""
Event store - records inbound webhook deliveries and synthetic reconciliation
events, and queues them for the webhook worker.

Idempotency: (platform_id, external_event_id) is unique. A redelivered event
returns the existing row and is not queued again.
"""
import hashlib
import json
import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.webhook_event import WebhookEvent
from src.services.provider_resolver import get_platform_by_slug
from src.services.task_dispatch import (
    PROCESS_WEBHOOK_TASK,
    enqueue_task,
    notify_task_processor,
)
from src.utils.errors import UnsupportedPlatformError, WebhookEventNotFoundError
from src.utils.logging import get_correlation_id

logger = logging.getLogger(__name__)

SYNC_SIGNATURE = "N/A (from sync)"
EVENT_STATUSES = ("pending", "processing", "processed", "failed")


class EventAlreadyProcessedError(ValueError):
    """Raised when an operator tries to requeue an already processed event."""


@dataclass(frozen=True)
class ExtractedEvent:
    event_type: str
    external_event_id: str
    data: dict


def compute_payload_hash(payload: Any) -> str:
    """Deterministic SHA-256 of a JSON payload (key order independent)."""
    raw = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()


def _extract_stripe(payload: dict) -> ExtractedEvent:
    return ExtractedEvent(
        event_type=payload.get("type") or "unknown",
        external_event_id=payload.get("id") or f"stripe_{compute_payload_hash(payload)[:32]}",
        data=payload.get("data") or {},
    )


def _extract_hotmart(payload: dict) -> ExtractedEvent:
    data = payload.get("data") or payload
    event_id = payload.get("id") or ((data.get("purchase") or {}).get("transaction"))
    return ExtractedEvent(
        event_type=payload.get("event") or "UNKNOWN",
        external_event_id=str(event_id) if event_id else f"hotmart_{compute_payload_hash(payload)[:32]}",
        data=data,
    )


def _extract_cartpanda(payload: dict) -> ExtractedEvent:
    event_type = payload.get("event") or "order.paid"
    order = payload.get("order") or {}
    if payload.get("id"):
        event_id = str(payload["id"])
    elif order.get("id"):
        # One order emits several events (paid, canceled); scope the id by type
        event_id = f"{event_type}:{order['id']}"
    else:
        event_id = f"cartpanda_{compute_payload_hash(payload)[:32]}"
    return ExtractedEvent(event_type=event_type, external_event_id=event_id, data=payload)


EXTRACTORS: dict[str, Callable[[dict], ExtractedEvent]] = {
    "stripe": _extract_stripe,
    "hotmart": _extract_hotmart,
    "cartpanda": _extract_cartpanda,
}


def extract_event(platform_slug: str, payload: dict) -> ExtractedEvent:
    extractor = EXTRACTORS.get(platform_slug)
    if not extractor:
        raise UnsupportedPlatformError(f"No webhook extractor for platform: {platform_slug}")
    return extractor(payload)


def generate_sync_event_id() -> str:
    """Synthetic ids never collide with platform-issued event ids."""
    return f"sync_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


async def _find_by_external_id(
    db: AsyncSession, platform_id: uuid.UUID, external_event_id: str
) -> Optional[WebhookEvent]:
    result = await db.execute(
        select(WebhookEvent).where(
            and_(
                WebhookEvent.platform_id == platform_id,
                WebhookEvent.external_event_id == external_event_id,
            )
        )
    )
    return result.scalar_one_or_none()


async def record_delivery(
    db: AsyncSession,
    platform_slug: str,
    payload: dict,
    signature: Optional[str] = None,
) -> tuple[WebhookEvent, bool]:
    """
    Record one inbound webhook delivery and queue it for processing.

    Returns:
        (event, created) - created is False for a duplicate delivery.
    """
    platform = await get_platform_by_slug(db, platform_slug)
    extracted = extract_event(platform.slug, payload)

    existing = await _find_by_external_id(db, platform.id, extracted.external_event_id)
    if existing:
        logger.info(
            "Duplicate webhook delivery ignored: platform=%s external_id=%s event=%s",
            platform.slug, extracted.external_event_id, str(existing.id)[:8],
        )
        return existing, False

    event = WebhookEvent(
        platform_id=platform.id,
        external_event_id=extracted.external_event_id,
        event_type=extracted.event_type,
        payload=extracted.data,
        signature=signature,
        status="pending",
        retry_count=0,
        correlation_id=get_correlation_id(),
    )
    try:
        db.add(event)
        await db.flush()
        task_id = await enqueue_task(
            PROCESS_WEBHOOK_TASK, {"webhook_event_id": str(event.id)}, priority=7, db=db
        )
        await db.commit()
    except IntegrityError:
        # Concurrent delivery of the same event won the insert
        await db.rollback()
        existing = await _find_by_external_id(db, platform.id, extracted.external_event_id)
        if existing is None:
            raise
        return existing, False

    logger.info(
        "Webhook event recorded: platform=%s type=%s id=%s",
        platform.slug, extracted.event_type, str(event.id)[:8],
    )
    await notify_task_processor(task_id)
    return event, True


async def record_synthetic_event(
    db: AsyncSession,
    platform_id: uuid.UUID,
    event_type: str,
    payload: dict,
) -> WebhookEvent:
    """
    Insert a reconciliation-generated event and its processing job inside the
    caller's transaction. The caller commits.
    """
    event = WebhookEvent(
        platform_id=platform_id,
        external_event_id=generate_sync_event_id(),
        event_type=event_type,
        payload=payload,
        signature=SYNC_SIGNATURE,
        status="pending",
        retry_count=0,
        correlation_id=get_correlation_id(),
    )
    db.add(event)
    await db.flush()
    await enqueue_task(PROCESS_WEBHOOK_TASK, {"webhook_event_id": str(event.id)}, db=db)
    return event


def is_synthetic(event: WebhookEvent) -> bool:
    return event.signature == SYNC_SIGNATURE


async def get_event(db: AsyncSession, event_id: uuid.UUID) -> WebhookEvent:
    event = await db.get(WebhookEvent, event_id)
    if not event:
        raise WebhookEventNotFoundError(f"Webhook event not found: {event_id}")
    return event


async def list_events(
    db: AsyncSession,
    platform_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    limit: int = 100,
) -> list[WebhookEvent]:
    query = select(WebhookEvent)
    if platform_id:
        query = query.where(WebhookEvent.platform_id == platform_id)
    if status:
        query = query.where(WebhookEvent.status == status)
    result = await db.execute(query.order_by(WebhookEvent.received_at.desc()).limit(limit))
    return list(result.scalars().all())


async def requeue_event(db: AsyncSession, event_id: uuid.UUID) -> WebhookEvent:
    """
    Operator retry: put a pending or failed event back on the queue.
    retry_count is kept, so an exhausted event gets exactly one more attempt.
    """
    event = await get_event(db, event_id)
    if event.status == "processed":
        raise EventAlreadyProcessedError(f"Webhook event already processed: {event_id}")

    event.status = "pending"
    event.error_message = None
    task_id = await enqueue_task(
        PROCESS_WEBHOOK_TASK, {"webhook_event_id": str(event.id)}, priority=7, db=db
    )
    await db.commit()
    await notify_task_processor(task_id)

    logger.info("Webhook event requeued: id=%s retry_count=%d", str(event.id)[:8], event.retry_count)
    return event
