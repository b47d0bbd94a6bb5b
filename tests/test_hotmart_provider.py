"""
Tests for src/integrations/hotmart_provider.py - OAuth token caching,
page_token pagination and normalization of decimal prices.
"""
import time
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.integrations.hotmart_provider import (
    HotmartProvider,
    map_subscription_status,
    map_transaction_status,
    normalize_buyer,
    normalize_subscription,
    normalize_transaction,
)
from src.schemas.canonical import FetchParams


def _make_mock_response(json_data: dict) -> MagicMock:
    """Build a mock httpx.Response that returns *json_data*."""
    response = MagicMock()
    response.json.return_value = json_data
    response.raise_for_status = MagicMock()
    return response


def _build_mock_client(post_response=None, get_responses=None, post_side_effect=None) -> AsyncMock:
    """Return a mock httpx.AsyncClient usable as an async ctx mgr."""
    mock_client = AsyncMock()
    if post_side_effect:
        mock_client.post = AsyncMock(side_effect=post_side_effect)
    else:
        mock_client.post = AsyncMock(return_value=post_response or _make_mock_response({}))
    mock_client.get = AsyncMock(side_effect=get_responses or [_make_mock_response({})])
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return mock_client


def _token_response():
    return _make_mock_response({"access_token": "hm_tok", "expires_in": 3600})


def _subscription_item(code="SUB123", status="ACTIVE"):
    return {
        "subscriber_code": code,
        "status": status,
        "subscriber": {"code": code, "email": "buyer@example.com", "name": "Buyer"},
        "product": {"id": 4321, "name": "Course"},
        "plan": {"name": "Monthly", "recurrency_period": "MONTHLY"},
        "price": {"value": 97.0, "currency_code": "BRL"},
        "accession_date": 1767225600000,
        "date_next_charge": 1769904000000,
    }


def _sale_item(transaction="HP0001", status="APPROVED", price=29.9):
    return {
        "buyer": {"email": "buyer@example.com", "name": "Buyer"},
        "product": {"id": 4321, "name": "Course"},
        "purchase": {
            "transaction": transaction,
            "status": status,
            "price": {"value": price, "currency_value": "BRL"},
            "order_date": 1767225600000,
            "approved_date": 1767225660000,
            "payment": {"type": "PIX"},
        },
    }


def _make_provider() -> HotmartProvider:
    return HotmartProvider(client_id="cid", client_secret="secret", basic_token="basic")


class TestMappings:
    def test_subscription_statuses(self):
        assert map_subscription_status("ACTIVE") == "active"
        assert map_subscription_status("delayed") == "past_due"
        assert map_subscription_status("CANCELLED_BY_CUSTOMER") == "canceled"
        assert map_subscription_status("INACTIVE") == "expired"
        assert map_subscription_status("SOMETHING") == "canceled"

    def test_transaction_statuses(self):
        assert map_transaction_status("APPROVED") == "succeeded"
        assert map_transaction_status("CHARGEBACK") == "refunded"
        assert map_transaction_status("WAITING_PAYMENT") == "pending"
        assert map_transaction_status(None) == "pending"


class TestNormalization:
    def test_subscription_price_converted_to_minor_units(self):
        result = normalize_subscription(_subscription_item())
        assert result.external_subscription_id == "SUB123"
        assert result.external_customer_id == "buyer@example.com"
        assert result.external_product_id == "4321"
        assert result.recurring_amount == 9700
        assert result.recurring_currency == "BRL"
        assert result.status == "active"
        assert result.started_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert result.next_billing_date == datetime(2026, 2, 1, tzinfo=timezone.utc)

    def test_trial_subscription(self):
        result = normalize_subscription(_subscription_item(status="TRIAL"))
        assert result.status == "trial_active"
        assert result.is_trial is True

    def test_sale_amount_is_exact(self):
        result = normalize_transaction(_sale_item(price=29.9))
        assert result.amount == 2990
        assert result.external_transaction_id == "HP0001"
        assert result.external_customer_id == "buyer@example.com"
        assert result.type == "one_time_payment"
        assert result.status == "succeeded"
        assert result.payment_method == "pix"

    def test_sale_with_subscription(self):
        item = _sale_item()
        item["subscription"] = {"subscriber": {"code": "SUB123"}}
        result = normalize_transaction(item)
        assert result.external_subscription_id == "SUB123"
        assert result.type == "subscription_payment"

    def test_sale_without_buyer_email(self):
        item = _sale_item()
        item["buyer"] = {}
        assert normalize_transaction(item).external_customer_id == "unknown"

    def test_buyer_keyed_by_email(self):
        result = normalize_buyer({
            "email": "buyer@example.com",
            "name": "Buyer",
            "checkout_phone": "5581999999999",
            "document": "12345678900",
            "address": {"country_iso": "BR", "city": "Recife", "zipcode": "50000-000"},
        })
        assert result.external_customer_id == "buyer@example.com"
        assert result.phone == "5581999999999"
        assert result.document_type == "CPF"
        assert result.zip_code == "50000-000"

    def test_buyer_without_email(self):
        assert normalize_buyer({"name": "Anonymous"}) is None


class TestHotmartToken:
    async def test_fetches_and_caches_token(self):
        provider = _make_provider()
        mock_client = _build_mock_client(post_response=_token_response())

        with patch("httpx.AsyncClient", return_value=mock_client):
            first = await provider._get_token()
            second = await provider._get_token()

        assert first == second == "hm_tok"
        assert mock_client.post.await_count == 1
        headers = mock_client.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Basic basic"
        assert provider._token_expires > time.time()

    async def test_refreshes_expired_token(self):
        provider = _make_provider()
        provider._token = "stale"
        provider._token_expires = time.time() - 1
        mock_client = _build_mock_client(post_response=_token_response())

        with patch("httpx.AsyncClient", return_value=mock_client):
            assert await provider._get_token() == "hm_tok"

    async def test_connection_failure_returns_false(self):
        provider = _make_provider()
        mock_client = _build_mock_client(
            post_side_effect=httpx.ConnectError("refused"),
        )
        with patch("httpx.AsyncClient", return_value=mock_client):
            assert await provider.test_connection() is False


class TestHotmartFetch:
    async def test_follows_next_page_token(self):
        provider = _make_provider()
        mock_client = _build_mock_client(
            post_response=_token_response(),
            get_responses=[
                _make_mock_response({
                    "items": [_subscription_item("S1"), _subscription_item("S2")],
                    "page_info": {"next_page_token": "tok2"},
                }),
                _make_mock_response({
                    "items": [_subscription_item("S3")],
                    "page_info": {},
                }),
            ],
        )

        with patch("httpx.AsyncClient", return_value=mock_client):
            result = await provider.fetch_subscriptions(FetchParams())

        assert [s.external_subscription_id for s in result] == ["S1", "S2", "S3"]
        first_params = mock_client.get.call_args_list[0].kwargs["params"]
        second_params = mock_client.get.call_args_list[1].kwargs["params"]
        assert "page_token" not in first_params
        assert second_params["page_token"] == "tok2"
        assert first_params["max_results"] == 100

    async def test_sales_window_in_epoch_ms(self):
        provider = _make_provider()
        mock_client = _build_mock_client(
            post_response=_token_response(),
            get_responses=[_make_mock_response({"items": [_sale_item()], "page_info": {}})],
        )
        params = FetchParams(start_date=datetime(2026, 1, 1, tzinfo=timezone.utc))

        with patch("httpx.AsyncClient", return_value=mock_client):
            result = await provider.fetch_transactions(params)

        assert len(result) == 1
        query = mock_client.get.call_args.kwargs["params"]
        assert query["start_date"] == 1767225600000
        assert query["transaction_status"] == "APPROVED"
        assert mock_client.get.call_args.kwargs["headers"]["Authorization"] == "Bearer hm_tok"

    async def test_http_errors_propagate(self):
        provider = _make_provider()
        error_response = MagicMock()
        error_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "boom", request=MagicMock(), response=MagicMock(status_code=500),
        )
        mock_client = _build_mock_client(
            post_response=_token_response(), get_responses=[error_response],
        )

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(httpx.HTTPStatusError):
                await provider.fetch_subscriptions(FetchParams())

    async def test_customers_not_listable(self):
        provider = _make_provider()
        with patch("httpx.AsyncClient") as client_cls:
            assert await provider.fetch_customers(FetchParams()) == []
        client_cls.assert_not_called()
