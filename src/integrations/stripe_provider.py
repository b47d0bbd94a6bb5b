"""
Stripe payment provider.
All Stripe calls are synchronous and run via run_in_executor to avoid blocking
the asyncio event loop. The API key is passed per call so several credential
sets can coexist in one process.

Stripe amounts are already in minor units and pass through unchanged.
The normalize_* functions are module-level so webhook handlers can reuse them
on the objects embedded in Stripe event payloads.
"""
import asyncio
import logging
from typing import Any, Optional

from src.integrations.provider_base import PaymentProviderBase, from_unix
from src.schemas.canonical import (
    FetchParams,
    NormalizedCustomer,
    NormalizedSubscription,
    NormalizedTransaction,
)

logger = logging.getLogger(__name__)

SUBSCRIPTION_STATUS_MAP = {
    "trialing": "trial_active",
    "active": "active",
    "past_due": "past_due",
    "canceled": "canceled",
    "unpaid": "expired",
    "incomplete": "expired",
    "incomplete_expired": "expired",
    "paused": "paused",
}

INVOICE_STATUS_MAP = {
    "draft": "pending",
    "open": "pending",
    "paid": "succeeded",
    "uncollectible": "failed",
    "void": "failed",
}

INTERVAL_MAP = {
    "day": "day",
    "week": "week",
    "month": "month",
    "year": "year",
}


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a plain dict (webhook JSON) or a StripeObject."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return getattr(obj, key, default)
    return default if value is None else value


def _ref_id(value: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    return _get(value, "id")


def map_subscription_status(status: Optional[str]) -> str:
    return SUBSCRIPTION_STATUS_MAP.get(status or "", "canceled")


def map_invoice_status(status: Optional[str]) -> str:
    return INVOICE_STATUS_MAP.get(status or "", "pending")


def map_interval(interval: Optional[str]) -> str:
    return INTERVAL_MAP.get(interval or "", "month")


def invoice_subscription_id(invoice: Any) -> Optional[str]:
    sub_id = _ref_id(_get(invoice, "subscription"))
    if sub_id:
        return sub_id
    # Newer API versions nest it under parent.subscription_details
    details = _get(_get(invoice, "parent"), "subscription_details")
    return _ref_id(_get(details, "subscription"))


def normalize_subscription(sub: Any) -> NormalizedSubscription:
    items = _get(_get(sub, "items"), "data") or []
    first_item = items[0] if items else None
    price = _get(first_item, "price")
    recurring = _get(price, "recurring")
    status = _get(sub, "status")

    period_start = _get(first_item, "current_period_start") or _get(sub, "current_period_start")
    period_end = _get(first_item, "current_period_end") or _get(sub, "current_period_end")

    return NormalizedSubscription(
        external_subscription_id=_get(sub, "id"),
        external_customer_id=_ref_id(_get(sub, "customer")) or "",
        external_product_id=_ref_id(_get(price, "product")) or "",
        external_price_id=_get(price, "id"),
        status=map_subscription_status(status),
        is_trial=status == "trialing",
        trial_start=from_unix(_get(sub, "trial_start")),
        trial_end=from_unix(_get(sub, "trial_end")),
        recurring_amount=int(_get(price, "unit_amount") or 0),
        recurring_currency=(_get(price, "currency") or "usd").upper(),
        billing_period=map_interval(_get(recurring, "interval")),
        billing_interval=int(_get(recurring, "interval_count") or 1),
        started_at=from_unix(_get(sub, "start_date") or _get(sub, "created")),
        current_period_start=from_unix(period_start),
        current_period_end=from_unix(period_end),
        canceled_at=from_unix(_get(sub, "canceled_at")),
        cancel_at_period_end=bool(_get(sub, "cancel_at_period_end", False)),
        metadata=dict(_get(sub, "metadata") or {}),
    )


def normalize_invoice(invoice: Any) -> NormalizedTransaction:
    """An invoice becomes one transaction, keyed by its charge when present."""
    charge_id = _ref_id(_get(invoice, "charge"))
    subscription_id = invoice_subscription_id(invoice)
    status_transitions = _get(invoice, "status_transitions")

    return NormalizedTransaction(
        external_transaction_id=charge_id or _get(invoice, "id"),
        external_customer_id=_ref_id(_get(invoice, "customer")) or "",
        external_subscription_id=subscription_id,
        external_invoice_id=_get(invoice, "id"),
        type="subscription_payment" if subscription_id else "one_time_payment",
        status=map_invoice_status(_get(invoice, "status")),
        amount=int(_get(invoice, "amount_paid") or 0),
        currency=(_get(invoice, "currency") or "usd").upper(),
        payment_method="card" if _get(invoice, "payment_intent") else None,
        created_at=from_unix(_get(invoice, "created")),
        paid_at=from_unix(_get(status_transitions, "paid_at")),
        metadata=dict(_get(invoice, "metadata") or {}),
    )


def normalize_customer(customer: Any) -> NormalizedCustomer:
    address = _get(customer, "address")
    return NormalizedCustomer(
        external_customer_id=_get(customer, "id"),
        email=_get(customer, "email"),
        name=_get(customer, "name"),
        phone=_get(customer, "phone"),
        country=_get(address, "country"),
        state=_get(address, "state"),
        city=_get(address, "city"),
        zip_code=_get(address, "postal_code"),
        address_line1=_get(address, "line1"),
        address_line2=_get(address, "line2"),
        created_at=from_unix(_get(customer, "created")),
        metadata=dict(_get(customer, "metadata") or {}),
    )


async def _run_sync(func, *args, **kwargs):
    """Run a synchronous Stripe SDK call in the default thread pool executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


def _get_stripe():
    import stripe
    stripe.max_network_retries = 0
    return stripe


def _created_filter(params: FetchParams) -> dict:
    created = {}
    if params.start_date:
        created["gte"] = int(params.start_date.timestamp())
    if params.end_date:
        created["lte"] = int(params.end_date.timestamp())
    return created


class StripeProvider(PaymentProviderBase):
    """Stripe API adapter (subscriptions, paid invoices, customers)."""

    name = "Stripe"
    slug = "stripe"

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def _list_all(self, list_func, params: FetchParams, **filters) -> list:
        created = _created_filter(params)
        if created:
            filters["created"] = created

        async def fetch_page(cursor: Optional[str], page_size: int):
            query = dict(filters, limit=page_size)
            if cursor:
                query["starting_after"] = cursor
            result = await _run_sync(list_func, api_key=self.api_key, **query)
            data = list(_get(result, "data") or [])
            next_cursor = _get(data[-1], "id") if data and _get(result, "has_more") else None
            return data, next_cursor

        return await self._collect(params, fetch_page)

    async def fetch_subscriptions(self, params: FetchParams) -> list[NormalizedSubscription]:
        stripe = _get_stripe()
        raw = await self._list_all(stripe.Subscription.list, params, status="all")
        return [normalize_subscription(sub) for sub in raw]

    async def fetch_transactions(self, params: FetchParams) -> list[NormalizedTransaction]:
        stripe = _get_stripe()
        raw = await self._list_all(stripe.Invoice.list, params, status="paid")
        return [normalize_invoice(invoice) for invoice in raw]

    async def fetch_customers(self, params: FetchParams) -> list[NormalizedCustomer]:
        stripe = _get_stripe()
        raw = await self._list_all(stripe.Customer.list, params)
        return [normalize_customer(customer) for customer in raw]

    async def test_connection(self) -> bool:
        try:
            stripe = _get_stripe()
            await _run_sync(stripe.Account.retrieve, api_key=self.api_key)
            return True
        except Exception as e:
            logger.error("Stripe connection test failed: %s", str(e))
            return False
