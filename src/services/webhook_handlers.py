"""
Webhook event handlers - one coroutine per (platform, event type).

Each handler reads the platform-native payload stored on the WebhookEvent,
builds a PersistenceFragment with the adapter normalizers and hands it to the
persistence routine, or applies a direct status transition. Handlers never
commit; the processor owns the transaction.

Synthetic events created by reconciliation carry an already-normalized record
and dispatch under the "sync" key.
"""
import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.integrations import cartpanda_provider as cartpanda
from src.integrations import hotmart_provider as hotmart
from src.integrations import stripe_provider as stripe_normalizers
from src.integrations.provider_base import from_unix, parse_datetime
from src.models.platform import Platform
from src.schemas.canonical import (
    AffiliateFragment,
    NormalizedCustomer,
    NormalizedSubscription,
    NormalizedTransaction,
    OrderFragment,
    PersistenceFragment,
)
from src.services.persistence import (
    PersistenceResult,
    mark_order_status,
    mark_subscription_status,
    mark_transaction_refunded,
    persist_fragment,
)

logger = logging.getLogger(__name__)

SYNC_DISPATCH_KEY = "sync"

Handler = Callable[[AsyncSession, Platform, dict], Awaitable[PersistenceResult]]


def _transition_result(row) -> PersistenceResult:
    return PersistenceResult(persisted=row is not None)


def _as_id(value) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value not in (None, "") else None


# --- Stripe -------------------------------------------------------------------
# Stored payload is the event's data dict: {"object": {...}, "previous_attributes": ...}

def _stripe_object(payload: dict) -> dict:
    return payload.get("object") or {}


async def handle_stripe_subscription_upsert(db, platform, payload):
    sub = stripe_normalizers.normalize_subscription(_stripe_object(payload))
    fragment = PersistenceFragment(
        customer=NormalizedCustomer(external_customer_id=sub.external_customer_id),
        subscription=sub,
    )
    return await persist_fragment(db, platform.id, fragment)


async def handle_stripe_subscription_deleted(db, platform, payload):
    obj = _stripe_object(payload)
    subscription = await mark_subscription_status(
        db,
        platform.id,
        obj.get("id"),
        "canceled",
        canceled_at=from_unix(obj.get("canceled_at") or obj.get("ended_at")),
    )
    return _transition_result(subscription)


async def handle_stripe_invoice_paid(db, platform, payload):
    invoice = _stripe_object(payload)
    transaction = stripe_normalizers.normalize_invoice(invoice)
    if transaction.status != "succeeded":
        # invoice.paid always describes a settled invoice
        transaction = transaction.model_copy(update={"status": "succeeded"})
    fragment = PersistenceFragment(
        customer=NormalizedCustomer(
            external_customer_id=transaction.external_customer_id,
            email=invoice.get("customer_email"),
            name=invoice.get("customer_name"),
        ),
        transaction=transaction,
    )
    return await persist_fragment(db, platform.id, fragment)


async def handle_stripe_invoice_payment_failed(db, platform, payload):
    subscription_id = stripe_normalizers.invoice_subscription_id(_stripe_object(payload))
    subscription = await mark_subscription_status(db, platform.id, subscription_id, "past_due")
    return _transition_result(subscription)


async def handle_stripe_customer_upsert(db, platform, payload):
    customer = stripe_normalizers.normalize_customer(_stripe_object(payload))
    return await persist_fragment(db, platform.id, PersistenceFragment(customer=customer))


async def handle_stripe_charge_refunded(db, platform, payload):
    charge = _stripe_object(payload)
    refunded_at = from_unix(charge.get("created"))
    transaction = await mark_transaction_refunded(db, platform.id, charge.get("id"), refunded_at)
    if transaction is None and charge.get("invoice"):
        # Invoices without a charge id are stored under the invoice id
        transaction = await mark_transaction_refunded(
            db, platform.id, _as_id(charge.get("invoice")), refunded_at
        )
    return _transition_result(transaction)


# --- Hotmart ------------------------------------------------------------------
# Stored payload is the delivery's data dict: buyer, purchase, product,
# subscription, affiliates, producer.

def _hotmart_subscriber_code(data: dict) -> Optional[str]:
    subscription = data.get("subscription") or {}
    subscriber = subscription.get("subscriber") or data.get("subscriber") or {}
    return subscription.get("subscriber_code") or subscriber.get("code")


def _hotmart_affiliate(data: dict) -> Optional[AffiliateFragment]:
    affiliates = data.get("affiliates") or []
    first = affiliates[0] if affiliates else None
    if not first or not first.get("affiliate_code"):
        return None
    return AffiliateFragment(
        external_affiliate_id=str(first["affiliate_code"]),
        name=first.get("name"),
        email=first.get("email"),
    )


async def handle_hotmart_purchase(db, platform, data):
    purchase = data.get("purchase") or {}
    transaction = hotmart.normalize_transaction(data)

    subscription = None
    if _hotmart_subscriber_code(data):
        subscription = hotmart.normalize_subscription(
            dict(data, price=purchase.get("price"))
        )

    order = OrderFragment(
        external_order_id=transaction.external_transaction_id,
        total_amount=transaction.amount,
        currency=transaction.currency,
        status="paid",
        ordered_at=transaction.created_at,
    )
    fragment = PersistenceFragment(
        customer=hotmart.normalize_buyer(data.get("buyer") or {}),
        affiliate=_hotmart_affiliate(data),
        subscription=subscription,
        transaction=transaction,
        order=order,
    )
    return await persist_fragment(db, platform.id, fragment)


async def handle_hotmart_cancellation(db, platform, data):
    subscriber_code = _hotmart_subscriber_code(data)
    canceled_at = parse_datetime(
        data.get("cancellation_date") or (data.get("subscription") or {}).get("date_cancellation")
    )
    if subscriber_code:
        subscription = await mark_subscription_status(
            db, platform.id, subscriber_code, "canceled", canceled_at=canceled_at
        )
        return _transition_result(subscription)

    purchase_id = (data.get("purchase") or {}).get("transaction")
    order = await mark_order_status(db, platform.id, purchase_id, "canceled")
    return _transition_result(order)


async def handle_hotmart_refund(db, platform, data):
    """Record the refund as its own transaction and flag the original sale."""
    original = hotmart.normalize_transaction(data)
    purchase = data.get("purchase") or {}
    refunded_at = parse_datetime(purchase.get("refund_date")) or original.created_at
    suffix = "chargeback" if (purchase.get("status") or "").upper() == "CHARGEBACK" else "refund"

    refund = NormalizedTransaction(
        external_transaction_id=f"{original.external_transaction_id}_{suffix}",
        external_customer_id=original.external_customer_id,
        external_subscription_id=original.external_subscription_id,
        type="refund",
        status="succeeded",
        amount=original.amount,
        currency=original.currency,
        payment_method=original.payment_method,
        created_at=refunded_at,
        paid_at=refunded_at,
        metadata={"refunded_transaction": original.external_transaction_id},
    )
    result = await persist_fragment(
        db,
        platform.id,
        PersistenceFragment(customer=hotmart.normalize_buyer(data.get("buyer") or {}), transaction=refund),
    )
    await mark_transaction_refunded(db, platform.id, original.external_transaction_id, refunded_at)
    await mark_order_status(db, platform.id, original.external_transaction_id, "refunded")
    return result


# --- Cartpanda ----------------------------------------------------------------
# Stored payload is the full delivery body; the order is nested under "order".

def _cartpanda_order(payload: dict) -> dict:
    return payload.get("order") or payload


def _cartpanda_customer(order: dict) -> Optional[NormalizedCustomer]:
    customer = order.get("customer") or {}
    if not customer.get("id") and order.get("customer_id"):
        customer = dict(customer, id=order["customer_id"])
    if not customer.get("id"):
        return None
    return cartpanda.normalize_customer(customer)


async def handle_cartpanda_order_paid(db, platform, payload):
    order = _cartpanda_order(payload)
    transaction = cartpanda.normalize_order(order)
    if transaction.status != "succeeded":
        transaction = transaction.model_copy(
            update={"status": "succeeded", "paid_at": transaction.paid_at or transaction.created_at}
        )

    subscription = None
    if isinstance(order.get("subscription"), dict) and order["subscription"].get("id"):
        sub_data = order["subscription"]
        if not sub_data.get("customer_id"):
            sub_data = dict(sub_data, customer_id=transaction.external_customer_id)
        subscription = cartpanda.normalize_subscription(sub_data)

    fragment = PersistenceFragment(
        customer=_cartpanda_customer(order),
        subscription=subscription,
        transaction=transaction,
        order=OrderFragment(
            external_order_id=str(order["id"]),
            total_amount=transaction.amount,
            currency=transaction.currency,
            status="paid",
            ordered_at=transaction.created_at,
        ),
    )
    return await persist_fragment(db, platform.id, fragment)


async def handle_cartpanda_order_canceled(db, platform, payload):
    order = _cartpanda_order(payload)
    updated = await mark_order_status(db, platform.id, _as_id(order.get("id")), "canceled")
    subscription = None
    subscription_id = _as_id(order.get("subscription_id"))
    if subscription_id:
        subscription = await mark_subscription_status(db, platform.id, subscription_id, "canceled")
    return _transition_result(updated or subscription)


async def handle_cartpanda_order_refunded(db, platform, payload):
    order = _cartpanda_order(payload)
    order_id = _as_id(order.get("id"))
    transaction = await mark_transaction_refunded(
        db, platform.id, order_id, parse_datetime(order.get("refunded_at"))
    )
    await mark_order_status(db, platform.id, order_id, "refunded")
    return _transition_result(transaction)


# --- Synthetic (reconciliation) -----------------------------------------------

async def handle_sync_subscription(db, platform, payload):
    subscription = NormalizedSubscription.model_validate(payload)
    return await persist_fragment(db, platform.id, PersistenceFragment(subscription=subscription))


async def handle_sync_transaction(db, platform, payload):
    transaction = NormalizedTransaction.model_validate(payload)
    return await persist_fragment(db, platform.id, PersistenceFragment(transaction=transaction))


async def handle_sync_customer(db, platform, payload):
    customer = NormalizedCustomer.model_validate(payload)
    return await persist_fragment(db, platform.id, PersistenceFragment(customer=customer))


HANDLERS: dict[tuple[str, str], Handler] = {
    ("stripe", "customer.subscription.created"): handle_stripe_subscription_upsert,
    ("stripe", "customer.subscription.updated"): handle_stripe_subscription_upsert,
    ("stripe", "customer.subscription.deleted"): handle_stripe_subscription_deleted,
    ("stripe", "invoice.paid"): handle_stripe_invoice_paid,
    ("stripe", "invoice.payment_succeeded"): handle_stripe_invoice_paid,
    ("stripe", "invoice.payment_failed"): handle_stripe_invoice_payment_failed,
    ("stripe", "customer.created"): handle_stripe_customer_upsert,
    ("stripe", "customer.updated"): handle_stripe_customer_upsert,
    ("stripe", "charge.refunded"): handle_stripe_charge_refunded,
    ("hotmart", "PURCHASE_APPROVED"): handle_hotmart_purchase,
    ("hotmart", "PURCHASE_COMPLETE"): handle_hotmart_purchase,
    ("hotmart", "PURCHASE_CANCELED"): handle_hotmart_cancellation,
    ("hotmart", "SUBSCRIPTION_CANCELLATION"): handle_hotmart_cancellation,
    ("hotmart", "PURCHASE_REFUNDED"): handle_hotmart_refund,
    ("hotmart", "PURCHASE_CHARGEBACK"): handle_hotmart_refund,
    ("cartpanda", "order.paid"): handle_cartpanda_order_paid,
    ("cartpanda", "order.canceled"): handle_cartpanda_order_canceled,
    ("cartpanda", "order.refunded"): handle_cartpanda_order_refunded,
    (SYNC_DISPATCH_KEY, "subscription.created"): handle_sync_subscription,
    (SYNC_DISPATCH_KEY, "transaction.created"): handle_sync_transaction,
    (SYNC_DISPATCH_KEY, "customer.created"): handle_sync_customer,
}

HANDLED_PLATFORMS = frozenset(
    key for key, _ in HANDLERS if key != SYNC_DISPATCH_KEY
)


def get_handler(dispatch_key: str, event_type: str) -> Optional[Handler]:
    return HANDLERS.get((dispatch_key, event_type))
