"""
Canonical persistence routine - writes one PersistenceFragment into the
domain tables in a fixed order:

    customer -> affiliate -> product/subscription -> transaction (+ allocation)
    -> spend / affiliate stats -> order

Every write is an upsert keyed by (platform_id, external id), so replaying a
fragment converges on the same rows. Nothing here commits: the caller owns the
transaction, and a failure anywhere rolls the whole fragment back (except the
best-effort affiliate savepoints, which never abort the fragment).
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.affiliate import Affiliate
from src.models.customer import Customer
from src.models.order import Order
from src.models.product import Product
from src.models.subscription import Subscription
from src.models.transaction import Transaction, TransactionSubscription
from src.schemas.canonical import (
    AffiliateFragment,
    NormalizedCustomer,
    NormalizedSubscription,
    NormalizedTransaction,
    OrderFragment,
    PersistenceFragment,
)
from src.utils.timezone import ensure_utc, utc_now

logger = logging.getLogger(__name__)

UNUSABLE_CUSTOMER_IDS = {"", "unknown"}

# Revenue (major units) a tier must exceed, highest first
AFFILIATE_TIERS = (
    ("diamond", 100_000),
    ("gold", 50_000),
    ("silver", 10_000),
)

CUSTOMER_FIELDS = (
    "email", "name", "phone", "document", "document_type", "country", "state",
    "city", "zip_code", "address_line1", "address_line2",
)

SUBSCRIPTION_FIELDS = (
    "external_customer_id", "external_product_id", "external_price_id", "status",
    "is_trial", "trial_amount", "trial_currency", "trial_start", "trial_end",
    "recurring_amount", "recurring_currency", "billing_period", "billing_interval",
    "started_at", "current_period_start", "current_period_end", "next_billing_date",
    "canceled_at", "cancel_at_period_end",
)

TRANSACTION_FIELDS = (
    "external_customer_id", "external_subscription_id", "external_invoice_id",
    "amount", "currency", "payment_method", "paid_at", "refunded_at",
)

# A refund is final: later deliveries and syncs may not move it back
TERMINAL_TRANSACTION_STATUSES = frozenset({"refunded"})


@dataclass
class PersistenceResult:
    persisted: bool = False
    customer_id: Optional[uuid.UUID] = None
    affiliate_id: Optional[uuid.UUID] = None
    subscription_id: Optional[uuid.UUID] = None
    transaction_id: Optional[uuid.UUID] = None
    order_id: Optional[uuid.UUID] = None
    sale_recorded: bool = False


def transaction_status_can_change(current: str, incoming: str) -> bool:
    return current not in TERMINAL_TRANSACTION_STATUSES or incoming == current


def compute_affiliate_tier(revenue_major_units: float) -> str:
    """bronze <= 10000 < silver <= 50000 < gold <= 100000 < diamond."""
    for tier, threshold in AFFILIATE_TIERS:
        if revenue_major_units > threshold:
            return tier
    return "bronze"


def _usable_customer_id(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() not in UNUSABLE_CUSTOMER_IDS


def _copy_present(target, source, fields) -> None:
    """Copy non-None values only; stored values are never blanked."""
    for field in fields:
        value = getattr(source, field)
        if value is not None:
            setattr(target, field, value)


def _merge_metadata(existing: Optional[dict], incoming: Optional[dict]) -> dict:
    merged = dict(existing or {})
    merged.update({k: v for k, v in (incoming or {}).items() if v is not None})
    return merged


def _resolve_customer_data(fragment: PersistenceFragment) -> Optional[NormalizedCustomer]:
    if fragment.customer and _usable_customer_id(fragment.customer.external_customer_id):
        return fragment.customer
    for section in (fragment.subscription, fragment.transaction):
        if section and _usable_customer_id(section.external_customer_id):
            return NormalizedCustomer(external_customer_id=section.external_customer_id)
    return None


async def upsert_customer(
    db: AsyncSession, platform_id: uuid.UUID, data: NormalizedCustomer
) -> Customer:
    result = await db.execute(
        select(Customer).where(
            and_(
                Customer.platform_id == platform_id,
                Customer.external_customer_id == data.external_customer_id,
            )
        )
    )
    customer = result.scalar_one_or_none()
    if customer is None:
        customer = Customer(
            platform_id=platform_id,
            external_customer_id=data.external_customer_id,
            total_spent=0,
            extra_data={},
        )
        if data.created_at:
            customer.created_at = data.created_at
        db.add(customer)

    _copy_present(customer, data, CUSTOMER_FIELDS)
    if data.metadata:
        customer.extra_data = _merge_metadata(customer.extra_data, data.metadata)
    await db.flush()
    return customer


async def upsert_affiliate(
    db: AsyncSession, platform_id: uuid.UUID, data: AffiliateFragment
) -> Affiliate:
    result = await db.execute(
        select(Affiliate).where(
            and_(
                Affiliate.platform_id == platform_id,
                Affiliate.external_affiliate_id == data.external_affiliate_id,
            )
        )
    )
    affiliate = result.scalar_one_or_none()
    if affiliate is None:
        affiliate = Affiliate(
            platform_id=platform_id,
            external_affiliate_id=data.external_affiliate_id,
            tier="bronze",
            total_sales_count=0,
            total_revenue=0,
        )
        db.add(affiliate)
    if data.name:
        affiliate.name = data.name
    if data.email:
        affiliate.email = data.email
    await db.flush()
    return affiliate


async def _upsert_affiliate_best_effort(
    db: AsyncSession, platform_id: uuid.UUID, data: AffiliateFragment
) -> Optional[Affiliate]:
    try:
        async with db.begin_nested():
            return await upsert_affiliate(db, platform_id, data)
    except Exception as e:
        logger.error("Affiliate upsert failed for %s (continuing): %s", data.external_affiliate_id, str(e))
        return None


async def get_or_create_product(
    db: AsyncSession, platform_id: uuid.UUID, external_product_id: Optional[str], name: Optional[str] = None
) -> Optional[Product]:
    if not external_product_id:
        return None
    result = await db.execute(
        select(Product).where(
            and_(
                Product.platform_id == platform_id,
                Product.external_product_id == external_product_id,
            )
        )
    )
    product = result.scalar_one_or_none()
    if product is None:
        product = Product(
            platform_id=platform_id,
            external_product_id=external_product_id,
            name=name,
        )
        db.add(product)
        await db.flush()
        logger.info("Created product %s on first reference", external_product_id)
    return product


async def find_subscription(
    db: AsyncSession, platform_id: uuid.UUID, external_subscription_id: Optional[str]
) -> Optional[Subscription]:
    if not external_subscription_id:
        return None
    result = await db.execute(
        select(Subscription).where(
            and_(
                Subscription.platform_id == platform_id,
                Subscription.external_subscription_id == external_subscription_id,
            )
        )
    )
    return result.scalar_one_or_none()


async def upsert_subscription(
    db: AsyncSession,
    platform_id: uuid.UUID,
    data: NormalizedSubscription,
    customer_id: Optional[uuid.UUID],
    product_id: Optional[uuid.UUID],
) -> Subscription:
    subscription = await find_subscription(db, platform_id, data.external_subscription_id)
    if subscription is None:
        subscription = Subscription(
            platform_id=platform_id,
            external_subscription_id=data.external_subscription_id,
            extra_data={},
        )
        db.add(subscription)

    _copy_present(subscription, data, SUBSCRIPTION_FIELDS)
    if customer_id:
        subscription.customer_id = customer_id
    if product_id:
        subscription.product_id = product_id
    if data.metadata:
        subscription.extra_data = _merge_metadata(subscription.extra_data, data.metadata)
    await db.flush()
    return subscription


async def find_transaction(
    db: AsyncSession, platform_id: uuid.UUID, external_transaction_id: str
) -> Optional[Transaction]:
    result = await db.execute(
        select(Transaction).where(
            and_(
                Transaction.platform_id == platform_id,
                Transaction.external_transaction_id == external_transaction_id,
            )
        )
    )
    return result.scalar_one_or_none()


async def upsert_transaction(
    db: AsyncSession,
    platform_id: uuid.UUID,
    data: NormalizedTransaction,
    customer_id: Optional[uuid.UUID],
) -> tuple[Transaction, bool]:
    """
    Insert or update a transaction.

    Returns:
        (transaction, became_succeeded) - True only on the first write that
        sees the sale succeeded; sale_recorded_at keeps replays from counting it
        again. A refunded transaction keeps its status.
    """
    transaction = await find_transaction(db, platform_id, data.external_transaction_id)
    if transaction is None:
        transaction = Transaction(
            platform_id=platform_id,
            external_transaction_id=data.external_transaction_id,
            transaction_type=data.type,
            transaction_date=data.created_at,
            extra_data={},
        )
        db.add(transaction)

    _copy_present(transaction, data, TRANSACTION_FIELDS)
    if transaction.status is None or transaction_status_can_change(transaction.status, data.status):
        transaction.status = data.status
    else:
        logger.info(
            "Transaction %s is %s - ignoring incoming status %s",
            data.external_transaction_id, transaction.status, data.status,
        )
    transaction.transaction_type = data.type
    transaction.transaction_date = data.created_at
    if customer_id:
        transaction.customer_id = customer_id
    if data.metadata:
        transaction.extra_data = _merge_metadata(transaction.extra_data, data.metadata)
    await db.flush()

    became_succeeded = (
        transaction.status == "succeeded"
        and transaction.transaction_type != "refund"
        and transaction.sale_recorded_at is None
    )
    if became_succeeded:
        transaction.sale_recorded_at = utc_now()
        await db.flush()
    return transaction, became_succeeded


async def _link_subscription(
    db: AsyncSession, transaction: Transaction, subscription_id: uuid.UUID
) -> None:
    result = await db.execute(
        select(TransactionSubscription).where(
            and_(
                TransactionSubscription.transaction_id == transaction.id,
                TransactionSubscription.subscription_id == subscription_id,
            )
        )
    )
    link = result.scalar_one_or_none()
    if link is None:
        db.add(
            TransactionSubscription(
                transaction_id=transaction.id,
                subscription_id=subscription_id,
                amount_allocated=transaction.amount,
            )
        )
    else:
        link.amount_allocated = transaction.amount
    await db.flush()


def _record_purchase_dates(customer: Customer, when: datetime) -> None:
    first = ensure_utc(customer.first_purchase_at)
    last = ensure_utc(customer.last_purchase_at)
    if first is None or when < first:
        customer.first_purchase_at = when
    if last is None or when > last:
        customer.last_purchase_at = when


async def update_affiliate_stats(
    db: AsyncSession, affiliate: Affiliate, amount: int, when: datetime
) -> Affiliate:
    affiliate.total_sales_count = (affiliate.total_sales_count or 0) + 1
    affiliate.total_revenue = (affiliate.total_revenue or 0) + amount
    affiliate.tier = compute_affiliate_tier(affiliate.total_revenue / 100)
    if affiliate.first_sale_at is None:
        affiliate.first_sale_at = when
    affiliate.last_sale_at = when
    await db.flush()
    return affiliate


async def _apply_sale_side_effects(
    db: AsyncSession,
    customer: Customer,
    affiliate: Optional[Affiliate],
    transaction: Transaction,
) -> None:
    when = ensure_utc(transaction.paid_at or transaction.transaction_date) or utc_now()
    customer.total_spent = (customer.total_spent or 0) + transaction.amount
    _record_purchase_dates(customer, when)
    await db.flush()

    if affiliate is None:
        return
    try:
        async with db.begin_nested():
            await update_affiliate_stats(db, affiliate, transaction.amount, when)
    except Exception as e:
        logger.error("Affiliate stats update failed for %s (continuing): %s", affiliate.id, str(e))


async def _get_or_create_order(
    db: AsyncSession,
    platform_id: uuid.UUID,
    data: OrderFragment,
    customer_id: uuid.UUID,
    affiliate_id: Optional[uuid.UUID],
) -> Order:
    result = await db.execute(
        select(Order).where(
            and_(
                Order.platform_id == platform_id,
                Order.external_order_id == data.external_order_id,
            )
        )
    )
    order = result.scalar_one_or_none()
    if order is None:
        order = Order(
            platform_id=platform_id,
            external_order_id=data.external_order_id,
            customer_id=customer_id,
            affiliate_id=affiliate_id,
            total_amount=data.total_amount,
            currency=data.currency,
            status=data.status,
            ordered_at=data.ordered_at,
        )
        db.add(order)
        await db.flush()
    return order


async def persist_fragment(
    db: AsyncSession, platform_id: uuid.UUID, fragment: PersistenceFragment
) -> PersistenceResult:
    """
    Write a fragment into the domain tables. Without a usable customer id
    (missing, empty or "unknown") nothing is written.
    """
    result = PersistenceResult()

    customer_data = _resolve_customer_data(fragment)
    if customer_data is None:
        logger.warning("No usable customer id in fragment - nothing persisted")
        return result

    customer = await upsert_customer(db, platform_id, customer_data)
    result.customer_id = customer.id
    result.persisted = True

    affiliate = None
    if fragment.affiliate:
        affiliate = await _upsert_affiliate_best_effort(db, platform_id, fragment.affiliate)
        if affiliate:
            result.affiliate_id = affiliate.id

    subscription = None
    if fragment.subscription:
        product = await get_or_create_product(
            db,
            platform_id,
            fragment.subscription.external_product_id,
            name=fragment.subscription.metadata.get("product_name"),
        )
        subscription = await upsert_subscription(
            db, platform_id, fragment.subscription, customer.id, product.id if product else None
        )
        result.subscription_id = subscription.id

    transaction = None
    if fragment.transaction:
        transaction, became_succeeded = await upsert_transaction(
            db, platform_id, fragment.transaction, customer.id
        )
        result.transaction_id = transaction.id

        if subscription is None:
            subscription = await find_subscription(
                db, platform_id, fragment.transaction.external_subscription_id
            )
        if subscription is not None:
            await _link_subscription(db, transaction, subscription.id)

        if became_succeeded and transaction.transaction_type != "refund":
            await _apply_sale_side_effects(db, customer, affiliate, transaction)
            result.sale_recorded = True

    if fragment.order:
        order = await _get_or_create_order(
            db, platform_id, fragment.order, customer.id, result.affiliate_id
        )
        result.order_id = order.id
        if transaction is not None and transaction.order_id is None:
            transaction.order_id = order.id
            await db.flush()

    return result


async def mark_subscription_status(
    db: AsyncSession,
    platform_id: uuid.UUID,
    external_subscription_id: Optional[str],
    status: str,
    canceled_at: Optional[datetime] = None,
) -> Optional[Subscription]:
    """Direct status transition; an unknown subscription is logged and skipped."""
    subscription = await find_subscription(db, platform_id, external_subscription_id)
    if subscription is None:
        logger.warning("Subscription %s not found - status %s not applied", external_subscription_id, status)
        return None
    subscription.status = status
    if status == "canceled":
        subscription.canceled_at = canceled_at or utc_now()
    await db.flush()
    return subscription


async def mark_transaction_refunded(
    db: AsyncSession,
    platform_id: uuid.UUID,
    external_transaction_id: Optional[str],
    refunded_at: Optional[datetime] = None,
) -> Optional[Transaction]:
    if not external_transaction_id:
        return None
    transaction = await find_transaction(db, platform_id, external_transaction_id)
    if transaction is None:
        logger.warning("Transaction %s not found - refund not applied", external_transaction_id)
        return None
    transaction.status = "refunded"
    transaction.refunded_at = refunded_at or utc_now()
    await db.flush()
    return transaction


async def mark_order_status(
    db: AsyncSession, platform_id: uuid.UUID, external_order_id: Optional[str], status: str
) -> Optional[Order]:
    if not external_order_id:
        return None
    result = await db.execute(
        select(Order).where(
            and_(
                Order.platform_id == platform_id,
                Order.external_order_id == external_order_id,
            )
        )
    )
    order = result.scalar_one_or_none()
    if order is None:
        logger.warning("Order %s not found - status %s not applied", external_order_id, status)
        return None
    order.status = status
    await db.flush()
    return order
