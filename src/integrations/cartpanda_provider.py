"""
Cartpanda payment provider.
Bearer API key auth; cursor pagination via starting_after + has_more.
Cartpanda returns decimal major-unit amounts; they are converted to minor units.
"""
import logging
from typing import Optional

import httpx

from src.integrations.provider_base import PaymentProviderBase, parse_datetime, to_minor_units
from src.schemas.canonical import (
    FetchParams,
    NormalizedCustomer,
    NormalizedSubscription,
    NormalizedTransaction,
)
from src.utils.timezone import utc_now

logger = logging.getLogger(__name__)

CARTPANDA_API_BASE = "https://api.cartpanda.com/v1"
CARTPANDA_DEFAULT_CURRENCY = "BRL"

SUBSCRIPTION_STATUS_MAP = {
    "trialing": "trial_active",
    "active": "active",
    "past_due": "past_due",
    "canceled": "canceled",
    "cancelled": "canceled",
    "unpaid": "expired",
    "incomplete": "expired",
    "expired": "expired",
    "paused": "paused",
}

TRANSACTION_STATUS_MAP = {
    "paid": "succeeded",
    "completed": "succeeded",
    "pending": "pending",
    "processing": "pending",
    "failed": "failed",
    "cancelled": "failed",
    "canceled": "failed",
    "refunded": "refunded",
}

BILLING_PERIOD_MAP = {
    "day": "day",
    "daily": "day",
    "week": "week",
    "weekly": "week",
    "month": "month",
    "monthly": "month",
    "year": "year",
    "yearly": "year",
    "annual": "year",
}

PAYMENT_METHOD_MAP = {
    "credit_card": "card",
    "debit_card": "card",
    "pix": "pix",
    "boleto": "boleto",
    "bank_slip": "boleto",
}


def map_subscription_status(status: Optional[str]) -> str:
    return SUBSCRIPTION_STATUS_MAP.get((status or "").lower(), "canceled")


def map_transaction_status(status: Optional[str]) -> str:
    return TRANSACTION_STATUS_MAP.get((status or "").lower(), "pending")


def map_billing_period(interval: Optional[str]) -> str:
    return BILLING_PERIOD_MAP.get((interval or "").lower(), "month")


def map_payment_method(method: Optional[str]) -> str:
    return PAYMENT_METHOD_MAP.get((method or "").lower(), method or "unknown")


def _id(value) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def normalize_subscription(sub: dict) -> NormalizedSubscription:
    plan = sub.get("plan") or {}
    product = sub.get("product") or {}
    trial_end = parse_datetime(sub.get("trial_end"))

    return NormalizedSubscription(
        external_subscription_id=str(sub["id"]),
        external_customer_id=_id(sub.get("customer_id") or (sub.get("customer") or {}).get("id")) or "unknown",
        external_product_id=_id(sub.get("product_id") or product.get("id")) or "",
        external_price_id=_id(sub.get("plan_id") or plan.get("id")),
        status=map_subscription_status(sub.get("status")),
        is_trial=bool(trial_end and trial_end > utc_now()),
        trial_start=parse_datetime(sub.get("trial_start")),
        trial_end=trial_end,
        recurring_amount=to_minor_units(sub.get("amount") or plan.get("amount") or 0),
        recurring_currency=(sub.get("currency") or CARTPANDA_DEFAULT_CURRENCY).upper(),
        billing_period=map_billing_period(sub.get("interval") or plan.get("interval")),
        billing_interval=int(sub.get("interval_count") or plan.get("interval_count") or 1),
        started_at=parse_datetime(sub.get("created_at")),
        current_period_start=parse_datetime(sub.get("current_period_start")),
        current_period_end=parse_datetime(sub.get("current_period_end")),
        canceled_at=parse_datetime(sub.get("canceled_at")),
        cancel_at_period_end=bool(sub.get("cancel_at_period_end", False)),
        metadata={"plan_name": plan.get("name"), "product_name": product.get("name")},
    )


def normalize_order(order: dict) -> NormalizedTransaction:
    """A Cartpanda order is the transaction record."""
    subscription_id = _id(order.get("subscription_id"))
    status = map_transaction_status(order.get("status") or order.get("payment_status"))

    return NormalizedTransaction(
        external_transaction_id=str(order["id"]),
        external_customer_id=_id(order.get("customer_id") or (order.get("customer") or {}).get("id")) or "unknown",
        external_subscription_id=subscription_id,
        external_invoice_id=_id(order.get("invoice_id")),
        type="subscription_payment" if subscription_id else "one_time_payment",
        status=status,
        amount=to_minor_units(order.get("amount") or order.get("total") or order.get("total_price") or 0),
        currency=(order.get("currency") or CARTPANDA_DEFAULT_CURRENCY).upper(),
        payment_method=map_payment_method(order.get("payment_method")),
        created_at=parse_datetime(order.get("created_at")) or utc_now(),
        paid_at=parse_datetime(order.get("paid_at")),
        refunded_at=parse_datetime(order.get("refunded_at")),
        metadata={"order_number": order.get("order_number")},
    )


def normalize_customer(customer: dict) -> NormalizedCustomer:
    address = customer.get("address") or {}
    name = customer.get("name") or (
        f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()
    )
    document_type = customer.get("document_type")
    if not document_type:
        document_type = "CPF" if customer.get("cpf") else "CNPJ" if customer.get("cnpj") else None

    return NormalizedCustomer(
        external_customer_id=str(customer["id"]),
        email=customer.get("email"),
        name=name or None,
        phone=customer.get("phone"),
        document=customer.get("document") or customer.get("cpf") or customer.get("cnpj"),
        document_type=document_type,
        country=address.get("country") or "BR",
        state=address.get("state"),
        city=address.get("city"),
        zip_code=address.get("zipcode") or address.get("zip_code"),
        address_line1=address.get("street"),
        address_line2=address.get("complement"),
        created_at=parse_datetime(customer.get("created_at")),
    )


class CartpandaProvider(PaymentProviderBase):
    """Cartpanda REST API adapter."""

    name = "Cartpanda"
    slug = "cartpanda"

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        """Make an authenticated GET request to the Cartpanda API."""
        async with httpx.AsyncClient(timeout=15.0) as client:
            response = await client.get(
                f"{CARTPANDA_API_BASE}{path}",
                params=params,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            return response.json()

    async def _list_all(self, path: str, params: FetchParams, **filters) -> list[dict]:
        base_query = dict(filters)
        if params.start_date:
            base_query["created_after"] = params.start_date.isoformat()
        if params.end_date:
            base_query["created_before"] = params.end_date.isoformat()

        async def fetch_page(cursor: Optional[str], page_size: int):
            query = dict(base_query, limit=page_size)
            if cursor:
                query["starting_after"] = cursor
            data = await self._get(path, query)
            items = data.get("data") or []
            next_cursor = str(items[-1]["id"]) if items and data.get("has_more") else None
            return items, next_cursor

        return await self._collect(params, fetch_page)

    async def fetch_subscriptions(self, params: FetchParams) -> list[NormalizedSubscription]:
        items = await self._list_all("/subscriptions", params)
        return [normalize_subscription(item) for item in items]

    async def fetch_transactions(self, params: FetchParams) -> list[NormalizedTransaction]:
        items = await self._list_all("/orders", params, status="paid")
        return [normalize_order(item) for item in items]

    async def fetch_customers(self, params: FetchParams) -> list[NormalizedCustomer]:
        items = await self._list_all("/customers", params)
        return [normalize_customer(item) for item in items]

    async def test_connection(self) -> bool:
        try:
            await self._get("/account")
            return True
        except Exception as e:
            logger.error("Cartpanda connection test failed: %s", str(e))
            return False
