"""
Webhook endpoints - receive payment-lifecycle events from every platform.

Intake only records the delivery and queues it; processing happens in the
webhook worker. Signature verification is done upstream (gateway), so the
signature header is stored as-is for audit.
"""
import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Request, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.models.webhook_event import WebhookEvent
from src.schemas.api_responses import (
    WebhookAcceptedResponse,
    WebhookEventDetail,
    WebhookEventListResponse,
    WebhookRetryResponse,
)
from src.services.event_store import (
    EVENT_STATUSES,
    EventAlreadyProcessedError,
    get_event,
    list_events,
    record_delivery,
    requeue_event,
)
from src.services.provider_resolver import get_platform_by_slug
from src.utils.errors import (
    PlatformNotFoundError,
    UnsupportedPlatformError,
    WebhookEventNotFoundError,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

# Header each platform signs its deliveries with
SIGNATURE_HEADERS = {
    "stripe": "stripe-signature",
    "hotmart": "x-hotmart-hottok",
    "cartpanda": "x-cartpanda-signature",
}


def _parse_event_id(event_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(event_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid event id")


def _event_detail(event: WebhookEvent) -> WebhookEventDetail:
    return WebhookEventDetail(
        id=str(event.id),
        platform_id=str(event.platform_id),
        external_event_id=event.external_event_id,
        event_type=event.event_type,
        status=event.status,
        retry_count=event.retry_count,
        error_message=event.error_message,
        received_at=event.received_at,
        processed_at=event.processed_at,
        correlation_id=event.correlation_id,
    )


@router.post("/{platform_slug}", response_model=WebhookAcceptedResponse)
async def receive_webhook(
    platform_slug: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Record one platform delivery. Duplicates return the existing event id."""
    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    signature = request.headers.get(SIGNATURE_HEADERS.get(platform_slug, "x-signature"))

    try:
        event, created = await record_delivery(db, platform_slug, payload, signature)
    except PlatformNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown platform: {platform_slug}")
    except UnsupportedPlatformError:
        raise HTTPException(status_code=400, detail=f"Unsupported platform: {platform_slug}")

    return WebhookAcceptedResponse(event_id=str(event.id), duplicate=not created)


@router.get("/events", response_model=WebhookEventListResponse)
async def list_webhook_events(
    platform: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Most recent events first, e.g. ?status=failed to find what needs a retry."""
    if status and status not in EVENT_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")
    platform_id = None
    if platform:
        try:
            platform_id = (await get_platform_by_slug(db, platform)).id
        except PlatformNotFoundError:
            raise HTTPException(status_code=404, detail=f"Unknown platform: {platform}")
    events = await list_events(db, platform_id=platform_id, status=status, limit=limit)
    return WebhookEventListResponse(events=[_event_detail(e) for e in events], total=len(events))


@router.get("/events/{event_id}", response_model=WebhookEventDetail)
async def get_webhook_event(
    event_id: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        event = await get_event(db, _parse_event_id(event_id))
    except WebhookEventNotFoundError:
        raise HTTPException(status_code=404, detail="Webhook event not found")
    return _event_detail(event)


@router.post("/events/{event_id}/retry", response_model=WebhookRetryResponse)
async def retry_webhook_event(
    event_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Manually requeue a pending or failed event."""
    try:
        event = await requeue_event(db, _parse_event_id(event_id))
    except WebhookEventNotFoundError:
        raise HTTPException(status_code=404, detail="Webhook event not found")
    except EventAlreadyProcessedError:
        raise HTTPException(status_code=409, detail="Webhook event already processed")
    return WebhookRetryResponse(event_id=str(event.id), retry_count=event.retry_count)
