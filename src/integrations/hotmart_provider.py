"""
Hotmart payment provider.
Uses OAuth 2.0 client credentials with a Basic token header; the access token
is cached until shortly before expiry. Pagination follows page_info.next_page_token.

Hotmart returns decimal major-unit prices; they are converted to minor units.
Hotmart has no customer listing API, so fetch_customers returns an empty list.
"""
import logging
import time
from typing import Optional

import httpx

from src.integrations.provider_base import PaymentProviderBase, parse_datetime, to_minor_units
from src.utils.timezone import utc_now
from src.schemas.canonical import (
    FetchParams,
    NormalizedCustomer,
    NormalizedSubscription,
    NormalizedTransaction,
)

logger = logging.getLogger(__name__)

HOTMART_AUTH_URL = "https://api-sec-vlc.hotmart.com/security/oauth/token"
HOTMART_API_BASE = "https://developers.hotmart.com"
HOTMART_DEFAULT_CURRENCY = "BRL"

SUBSCRIPTION_STATUS_MAP = {
    "TRIAL": "trial_active",
    "ACTIVE": "active",
    "OVERDUE": "past_due",
    "DELAYED": "past_due",
    "CANCELLED": "canceled",
    "CANCELLED_BY_ADMIN": "canceled",
    "CANCELLED_BY_CUSTOMER": "canceled",
    "CANCELLED_BY_SELLER": "canceled",
    "INACTIVE": "expired",
}

TRANSACTION_STATUS_MAP = {
    "APPROVED": "succeeded",
    "COMPLETE": "succeeded",
    "COMPLETED": "succeeded",
    "REFUNDED": "refunded",
    "CHARGEBACK": "refunded",
    "CANCELLED": "failed",
    "BLOCKED": "failed",
    "PRINTED_BILLET": "pending",
    "WAITING_PAYMENT": "pending",
}

RECURRENCE_PERIOD_MAP = {
    "WEEKLY": "week",
    "MONTHLY": "month",
    "QUARTERLY": "month",
    "SEMIANNUALLY": "month",
    "YEARLY": "year",
}

PAYMENT_TYPE_MAP = {
    "CREDIT_CARD": "card",
    "BILLET": "boleto",
    "PAYPAL": "paypal",
    "PIX": "pix",
}


def map_subscription_status(status: Optional[str]) -> str:
    return SUBSCRIPTION_STATUS_MAP.get((status or "").upper(), "canceled")


def map_transaction_status(status: Optional[str]) -> str:
    return TRANSACTION_STATUS_MAP.get((status or "").upper(), "pending")


def map_recurrence_period(period: Optional[str]) -> str:
    return RECURRENCE_PERIOD_MAP.get((period or "").upper(), "month")


def map_payment_type(payment_type: Optional[str]) -> str:
    return PAYMENT_TYPE_MAP.get((payment_type or "").upper(), "unknown")


def _price(container: dict) -> tuple[int, str]:
    price = container.get("price") or {}
    currency = price.get("currency_code") or price.get("currency_value") or HOTMART_DEFAULT_CURRENCY
    return to_minor_units(price.get("value")), currency.upper()


def normalize_subscription(item: dict) -> NormalizedSubscription:
    """
    Normalize a subscription from the subscriptions API. Older payloads nest
    it under purchase/subscription; both shapes are accepted.
    """
    purchase = item.get("purchase") or {}
    sub = item.get("subscription") or item
    subscriber = sub.get("subscriber") or item.get("subscriber") or {}
    buyer = purchase.get("buyer") or item.get("buyer") or {}
    product = item.get("product") or purchase.get("product") or {}
    plan = sub.get("plan") or item.get("plan") or {}
    status = sub.get("status")

    amount, currency = _price(sub if sub.get("price") else item)
    if not amount and sub.get("recurrence_price"):
        amount = to_minor_units(sub["recurrence_price"].get("value"))

    next_charge = parse_datetime(sub.get("date_next_charge"))

    return NormalizedSubscription(
        external_subscription_id=str(
            sub.get("subscriber_code") or subscriber.get("code") or purchase.get("transaction")
        ),
        external_customer_id=subscriber.get("email") or buyer.get("email") or "unknown",
        external_product_id=str(product.get("id") or ""),
        external_price_id=str((purchase.get("offer") or {}).get("code") or plan.get("id") or "") or None,
        status=map_subscription_status(status),
        is_trial=(status or "").upper() == "TRIAL" or bool(sub.get("trial")),
        trial_start=parse_datetime(sub.get("trial_start_date")),
        trial_end=parse_datetime(sub.get("trial_end_date")),
        recurring_amount=amount,
        recurring_currency=currency,
        billing_period=map_recurrence_period(
            plan.get("recurrency_period") or sub.get("recurrence_period")
        ),
        billing_interval=1,
        started_at=parse_datetime(
            sub.get("accession_date") or purchase.get("approved_date")
        ),
        current_period_end=next_charge,
        next_billing_date=next_charge,
        canceled_at=parse_datetime(sub.get("cancellation_date") or sub.get("end_accession_date")),
        metadata={"product_name": product.get("name"), "plan_name": plan.get("name")},
    )


def normalize_transaction(item: dict) -> NormalizedTransaction:
    """Normalize a sale from the sales history API."""
    purchase = item.get("purchase") or item
    buyer = item.get("buyer") or purchase.get("buyer") or {}
    product = item.get("product") or purchase.get("product") or {}
    subscription = item.get("subscription") or purchase.get("subscription") or {}
    subscriber_code = subscription.get("subscriber_code") or (
        subscription.get("subscriber") or {}
    ).get("code")
    status = map_transaction_status(purchase.get("status"))
    amount, currency = _price(purchase)

    return NormalizedTransaction(
        external_transaction_id=str(purchase.get("transaction")),
        external_customer_id=buyer.get("email") or "unknown",
        external_subscription_id=subscriber_code,
        type="subscription_payment" if (subscriber_code or purchase.get("is_subscription")) else "one_time_payment",
        status=status,
        amount=amount,
        currency=currency,
        payment_method=map_payment_type((purchase.get("payment") or {}).get("type")),
        created_at=parse_datetime(purchase.get("order_date") or purchase.get("approved_date")) or utc_now(),
        paid_at=parse_datetime(purchase.get("approved_date")),
        refunded_at=parse_datetime(purchase.get("refund_date")) if status == "refunded" else None,
        metadata={"product_name": product.get("name"), "commission": purchase.get("commission")},
    )


def normalize_buyer(buyer: dict) -> Optional[NormalizedCustomer]:
    """Buyers are keyed by email; returns None when no email is present."""
    email = buyer.get("email")
    if not email:
        return None
    address = buyer.get("address") or {}
    return NormalizedCustomer(
        external_customer_id=email,
        email=email,
        name=buyer.get("name"),
        phone=buyer.get("checkout_phone") or buyer.get("phone"),
        document=buyer.get("document"),
        document_type=(buyer.get("document_type") or "CPF").upper(),
        country=address.get("country_iso") or address.get("country") or "BR",
        state=address.get("state"),
        city=address.get("city"),
        zip_code=address.get("zipcode") or address.get("zip_code"),
        address_line1=address.get("address"),
        address_line2=address.get("neighborhood"),
        metadata={"ucode": buyer.get("ucode")} if buyer.get("ucode") else {},
    )


def _epoch_ms(params: FetchParams) -> dict:
    query = {}
    if params.start_date:
        query["start_date"] = int(params.start_date.timestamp() * 1000)
    if params.end_date:
        query["end_date"] = int(params.end_date.timestamp() * 1000)
    return query


class HotmartProvider(PaymentProviderBase):
    """Hotmart Payments API adapter."""

    name = "Hotmart"
    slug = "hotmart"

    def __init__(self, client_id: str, client_secret: str, basic_token: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.basic_token = basic_token
        self._token: Optional[str] = None
        self._token_expires: float = 0

    async def _get_token(self) -> str:
        """Get or refresh the OAuth access token."""
        if self._token and time.time() < self._token_expires:
            return self._token

        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                HOTMART_AUTH_URL,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                headers={"Authorization": f"Basic {self.basic_token}"},
            )
            response.raise_for_status()
            data = response.json()
            self._token = data["access_token"]
            # Refresh 1 minute before expiry
            self._token_expires = time.time() + data.get("expires_in", 3600) - 60
            return self._token

    async def _get(self, path: str, params: dict) -> dict:
        """Make an authenticated GET request to the Hotmart API."""
        token = await self._get_token()
        async with httpx.AsyncClient(timeout=15.0) as client:
            response = await client.get(
                f"{HOTMART_API_BASE}{path}",
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            return response.json()

    async def _list_all(self, path: str, params: FetchParams, **filters) -> list[dict]:
        base_query = {**_epoch_ms(params), **filters}

        async def fetch_page(cursor: Optional[str], page_size: int):
            query = dict(base_query, max_results=page_size)
            if cursor:
                query["page_token"] = cursor
            data = await self._get(path, query)
            next_cursor = (data.get("page_info") or {}).get("next_page_token")
            return data.get("items") or [], next_cursor

        return await self._collect(params, fetch_page)

    async def fetch_subscriptions(self, params: FetchParams) -> list[NormalizedSubscription]:
        items = await self._list_all("/payments/api/v1/subscriptions", params)
        return [normalize_subscription(item) for item in items]

    async def fetch_transactions(self, params: FetchParams) -> list[NormalizedTransaction]:
        items = await self._list_all(
            "/payments/api/v1/sales/history", params, transaction_status="APPROVED"
        )
        return [normalize_transaction(item) for item in items]

    async def fetch_customers(self, params: FetchParams) -> list[NormalizedCustomer]:
        logger.debug("Hotmart has no customer listing API - returning empty list")
        return []

    async def test_connection(self) -> bool:
        try:
            return bool(await self._get_token())
        except Exception as e:
            logger.error("Hotmart connection test failed: %s", str(e))
            return False
