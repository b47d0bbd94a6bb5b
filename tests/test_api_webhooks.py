"""
Tests for src/api/webhooks.py - webhook intake, event lookup and manual retry.
"""
import json
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException

from src.api.webhooks import (
    get_webhook_event,
    list_webhook_events,
    receive_webhook,
    retry_webhook_event,
)


def _make_request(body, headers=None) -> MagicMock:
    """Mock Request whose body() returns *body* (dict bodies are JSON-encoded)."""
    raw = json.dumps(body).encode() if isinstance(body, (dict, list)) else body
    req = MagicMock()
    req.body = AsyncMock(return_value=raw)
    req.headers = headers or {}
    return req


def _stripe_event(event_id="evt_1"):
    return {
        "id": event_id,
        "type": "customer.subscription.updated",
        "data": {"object": {"id": "sub_1", "customer": "cus_1", "status": "active"}},
    }


class TestReceiveWebhook:
    async def test_accepts_and_records(self, db, stripe_platform):
        req = _make_request(_stripe_event(), headers={"stripe-signature": "t=1,v1=abc"})

        response = await receive_webhook("stripe", req, db)

        assert response.status == "accepted"
        assert response.duplicate is False
        detail = await get_webhook_event(response.event_id, db)
        assert detail.event_type == "customer.subscription.updated"
        assert detail.status == "pending"

    async def test_duplicate_returns_same_event(self, db, stripe_platform):
        first = await receive_webhook("stripe", _make_request(_stripe_event()), db)
        second = await receive_webhook("stripe", _make_request(_stripe_event()), db)

        assert second.duplicate is True
        assert second.event_id == first.event_id

    async def test_unknown_platform_404(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await receive_webhook("paypal", _make_request({"id": "x"}), db)
        assert exc_info.value.status_code == 404

    async def test_platform_without_extractor_400(self, db, make_platform):
        await make_platform("kiwify")
        with pytest.raises(HTTPException) as exc_info:
            await receive_webhook("kiwify", _make_request({"id": "x"}), db)
        assert exc_info.value.status_code == 400

    async def test_invalid_json_400(self, db, stripe_platform):
        with pytest.raises(HTTPException) as exc_info:
            await receive_webhook("stripe", _make_request(b"{not json"), db)
        assert exc_info.value.status_code == 400

    async def test_non_object_body_400(self, db, stripe_platform):
        with pytest.raises(HTTPException) as exc_info:
            await receive_webhook("stripe", _make_request([1, 2, 3]), db)
        assert exc_info.value.status_code == 400

    async def test_hotmart_delivery(self, db, hotmart_platform):
        body = {
            "id": "hm-1",
            "event": "PURCHASE_APPROVED",
            "data": {"purchase": {"transaction": "HP1"}, "buyer": {"email": "b@example.com"}},
        }
        response = await receive_webhook(
            "hotmart", _make_request(body, headers={"x-hotmart-hottok": "tok"}), db,
        )
        detail = await get_webhook_event(response.event_id, db)
        assert detail.external_event_id == "hm-1"
        assert detail.event_type == "PURCHASE_APPROVED"


class TestListWebhookEvents:
    async def test_filters_by_status_and_platform(self, db, stripe_platform):
        await receive_webhook("stripe", _make_request(_stripe_event("evt_1")), db)
        failed = await receive_webhook("stripe", _make_request(_stripe_event("evt_2")), db)
        from src.services.event_store import get_event
        event = await get_event(db, uuid.UUID(failed.event_id))
        event.status = "failed"
        await db.commit()

        everything = await list_webhook_events(platform="stripe", status=None, limit=100, db=db)
        only_failed = await list_webhook_events(platform=None, status="failed", limit=100, db=db)

        assert everything.total == 2
        assert only_failed.total == 1
        assert only_failed.events[0].id == failed.event_id

    async def test_invalid_status_400(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await list_webhook_events(platform=None, status="done", limit=100, db=db)
        assert exc_info.value.status_code == 400

    async def test_unknown_platform_404(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await list_webhook_events(platform="paypal", status=None, limit=100, db=db)
        assert exc_info.value.status_code == 404


class TestGetWebhookEvent:
    async def test_invalid_id_400(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await get_webhook_event("not-a-uuid", db)
        assert exc_info.value.status_code == 400

    async def test_missing_404(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await get_webhook_event(str(uuid.uuid4()), db)
        assert exc_info.value.status_code == 404


class TestRetryWebhookEvent:
    async def test_requeues_failed_event(self, db, stripe_platform):
        accepted = await receive_webhook("stripe", _make_request(_stripe_event()), db)
        from src.services.event_store import get_event
        event = await get_event(db, uuid.UUID(accepted.event_id))
        event.status = "failed"
        event.retry_count = 5
        await db.commit()

        response = await retry_webhook_event(accepted.event_id, db)

        assert response.status == "requeued"
        assert response.retry_count == 5
        assert (await get_webhook_event(accepted.event_id, db)).status == "pending"

    async def test_processed_event_409(self, db, stripe_platform):
        accepted = await receive_webhook("stripe", _make_request(_stripe_event()), db)
        from src.services.event_store import get_event
        event = await get_event(db, uuid.UUID(accepted.event_id))
        event.status = "processed"
        await db.commit()

        with pytest.raises(HTTPException) as exc_info:
            await retry_webhook_event(accepted.event_id, db)
        assert exc_info.value.status_code == 409

    async def test_missing_404(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await retry_webhook_event(str(uuid.uuid4()), db)
        assert exc_info.value.status_code == 404
