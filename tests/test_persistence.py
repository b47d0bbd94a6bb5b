"""
Tests for src/services/persistence.py - the canonical upsert routine.
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

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
from src.services.persistence import (
    compute_affiliate_tier,
    mark_order_status,
    mark_subscription_status,
    mark_transaction_refunded,
    persist_fragment,
    update_affiliate_stats,
)

PAID_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _customer(external_id="cus_1", **overrides):
    data = {"external_customer_id": external_id, "email": "jane@example.com", "name": "Jane"}
    data.update(overrides)
    return NormalizedCustomer(**data)


def _subscription(external_id="sub_1", customer_id="cus_1", **overrides):
    data = {
        "external_subscription_id": external_id,
        "external_customer_id": customer_id,
        "external_product_id": "prod_1",
        "status": "active",
        "recurring_amount": 2990,
        "recurring_currency": "BRL",
        "metadata": {"product_name": "Pro Plan"},
    }
    data.update(overrides)
    return NormalizedSubscription(**data)


def _transaction(external_id="ch_1", customer_id="cus_1", **overrides):
    data = {
        "external_transaction_id": external_id,
        "external_customer_id": customer_id,
        "external_subscription_id": "sub_1",
        "type": "subscription_payment",
        "status": "succeeded",
        "amount": 2990,
        "currency": "BRL",
        "created_at": PAID_AT,
        "paid_at": PAID_AT,
    }
    data.update(overrides)
    return NormalizedTransaction(**data)


async def _count(db, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar()


async def _one(db, model):
    return (await db.execute(select(model))).scalar_one()


class TestAffiliateTier:
    @pytest.mark.parametrize("revenue,tier", [
        (0, "bronze"),
        (10_000, "bronze"),
        (10_000.01, "silver"),
        (10_001, "silver"),
        (50_000, "silver"),
        (50_001, "gold"),
        (100_000, "gold"),
        (100_001, "diamond"),
    ])
    def test_boundaries(self, revenue, tier):
        assert compute_affiliate_tier(revenue) == tier


class TestPersistFragment:
    async def test_full_fragment_creates_every_row(self, db, stripe_platform):
        fragment = PersistenceFragment(
            customer=_customer(),
            subscription=_subscription(),
            transaction=_transaction(),
        )

        result = await persist_fragment(db, stripe_platform.id, fragment)
        await db.commit()

        assert result.persisted is True
        assert result.sale_recorded is True
        customer = await _one(db, Customer)
        assert customer.email == "jane@example.com"
        assert customer.total_spent == 2990
        assert customer.first_purchase_at is not None

        product = await _one(db, Product)
        assert product.name == "Pro Plan"

        subscription = await _one(db, Subscription)
        assert subscription.customer_id == customer.id
        assert subscription.product_id == product.id

        link = await _one(db, TransactionSubscription)
        assert link.subscription_id == subscription.id
        assert link.amount_allocated == 2990

    async def test_replay_is_idempotent(self, db, stripe_platform):
        fragment = PersistenceFragment(
            customer=_customer(),
            subscription=_subscription(),
            transaction=_transaction(),
        )

        await persist_fragment(db, stripe_platform.id, fragment)
        second = await persist_fragment(db, stripe_platform.id, fragment)
        await db.commit()

        assert second.sale_recorded is False
        assert await _count(db, Customer) == 1
        assert await _count(db, Subscription) == 1
        assert await _count(db, Transaction) == 1
        assert await _count(db, TransactionSubscription) == 1
        assert (await _one(db, Customer)).total_spent == 2990

    async def test_unknown_customer_is_a_no_op(self, db, stripe_platform):
        fragment = PersistenceFragment(
            transaction=_transaction(customer_id="unknown"),
        )

        result = await persist_fragment(db, stripe_platform.id, fragment)

        assert result.persisted is False
        assert await _count(db, Customer) == 0
        assert await _count(db, Transaction) == 0

    async def test_empty_customer_id_is_a_no_op(self, db, stripe_platform):
        result = await persist_fragment(
            db, stripe_platform.id, PersistenceFragment(subscription=_subscription(customer_id=""))
        )
        assert result.persisted is False
        assert await _count(db, Subscription) == 0

    async def test_customer_stub_from_transaction(self, db, stripe_platform):
        result = await persist_fragment(
            db, stripe_platform.id,
            PersistenceFragment(transaction=_transaction(external_subscription_id=None)),
        )
        await db.commit()

        customer = await _one(db, Customer)
        assert result.customer_id == customer.id
        assert customer.external_customer_id == "cus_1"
        assert customer.email is None

    async def test_update_never_blanks_stored_fields(self, db, stripe_platform):
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(
            customer=_customer(phone="+5581999999999"),
        ))
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(
            customer=_customer(name="Jane Doe", email=None),
        ))
        await db.commit()

        customer = await _one(db, Customer)
        assert customer.name == "Jane Doe"
        assert customer.email == "jane@example.com"
        assert customer.phone == "+5581999999999"

    async def test_pending_then_succeeded_counts_sale_once(self, db, stripe_platform):
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(
            transaction=_transaction(status="pending"),
        ))
        customer = await _one(db, Customer)
        assert customer.total_spent == 0

        result = await persist_fragment(db, stripe_platform.id, PersistenceFragment(
            transaction=_transaction(status="succeeded"),
        ))
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(
            transaction=_transaction(status="succeeded"),
        ))
        await db.commit()

        assert result.sale_recorded is True
        assert (await _one(db, Customer)).total_spent == 2990

    async def test_refund_transaction_is_not_a_sale(self, db, stripe_platform):
        result = await persist_fragment(db, stripe_platform.id, PersistenceFragment(
            transaction=_transaction(external_id="ch_1_refund", type="refund", status="succeeded"),
        ))
        await db.commit()

        assert result.sale_recorded is False
        assert (await _one(db, Customer)).total_spent == 0

    async def test_replay_after_refund_keeps_refund_and_total(self, db, stripe_platform):
        # invoice.paid, charge.refunded, then a late invoice.payment_succeeded
        fragment = PersistenceFragment(transaction=_transaction())
        await persist_fragment(db, stripe_platform.id, fragment)
        await mark_transaction_refunded(db, stripe_platform.id, "ch_1", refunded_at=PAID_AT)

        replay = await persist_fragment(db, stripe_platform.id, fragment)
        await db.commit()

        transaction = await _one(db, Transaction)
        assert replay.sale_recorded is False
        assert transaction.status == "refunded"
        assert transaction.sale_recorded_at is not None
        assert (await _one(db, Customer)).total_spent == 2990

    async def test_refunded_before_success_never_counts(self, db, stripe_platform):
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(
            transaction=_transaction(status="refunded"),
        ))
        result = await persist_fragment(db, stripe_platform.id, PersistenceFragment(
            transaction=_transaction(status="succeeded"),
        ))
        await db.commit()

        assert result.sale_recorded is False
        assert (await _one(db, Transaction)).status == "refunded"
        assert (await _one(db, Customer)).total_spent == 0

    async def test_transaction_links_to_existing_subscription(self, db, stripe_platform):
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(subscription=_subscription()))
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(transaction=_transaction()))
        await db.commit()

        link = await _one(db, TransactionSubscription)
        assert link.subscription_id == (await _one(db, Subscription)).id

    async def test_purchase_dates_track_min_and_max(self, db, stripe_platform):
        later = datetime(2026, 4, 1, tzinfo=timezone.utc)
        earlier = datetime(2026, 2, 1, tzinfo=timezone.utc)
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(
            transaction=_transaction("ch_a", paid_at=later, created_at=later),
        ))
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(
            transaction=_transaction("ch_b", paid_at=earlier, created_at=earlier),
        ))
        await db.commit()

        customer = await _one(db, Customer)
        assert customer.total_spent == 5980
        assert customer.first_purchase_at.replace(tzinfo=timezone.utc) == earlier
        assert customer.last_purchase_at.replace(tzinfo=timezone.utc) == later


class TestAffiliatesAndOrders:
    async def test_affiliate_stats_on_sale(self, db, hotmart_platform):
        fragment = PersistenceFragment(
            customer=_customer("buyer@example.com"),
            affiliate=AffiliateFragment(external_affiliate_id="AFF1", name="Partner"),
            transaction=_transaction(
                "HP1", customer_id="buyer@example.com",
                external_subscription_id=None, type="one_time_payment", amount=1_500_000,
            ),
            order=OrderFragment(external_order_id="HP1", total_amount=1_500_000, currency="BRL"),
        )

        result = await persist_fragment(db, hotmart_platform.id, fragment)
        await persist_fragment(db, hotmart_platform.id, fragment)
        await db.commit()

        affiliate = await _one(db, Affiliate)
        assert result.affiliate_id == affiliate.id
        assert affiliate.total_sales_count == 1
        assert affiliate.total_revenue == 1_500_000
        assert affiliate.tier == "silver"
        assert affiliate.first_sale_at is not None

        order = await _one(db, Order)
        assert order.affiliate_id == affiliate.id
        assert (await _one(db, Transaction)).order_id == order.id

    async def test_order_without_transaction(self, db, cartpanda_platform):
        result = await persist_fragment(db, cartpanda_platform.id, PersistenceFragment(
            customer=_customer("55"),
            order=OrderFragment(external_order_id="1001", total_amount=14990),
        ))
        await db.commit()

        assert result.order_id == (await _one(db, Order)).id
        assert result.transaction_id is None

    async def test_update_affiliate_stats_promotes_tier(self, db, hotmart_platform):
        affiliate = Affiliate(
            platform_id=hotmart_platform.id,
            external_affiliate_id="AFF2",
            tier="gold",
            total_sales_count=10,
            total_revenue=10_000_000,
        )
        db.add(affiliate)
        await db.flush()

        await update_affiliate_stats(db, affiliate, 1, PAID_AT)
        assert affiliate.total_revenue == 10_000_001
        assert affiliate.tier == "diamond"
        assert affiliate.last_sale_at == PAID_AT


class TestStatusTransitions:
    async def test_cancel_subscription(self, db, stripe_platform):
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(subscription=_subscription()))

        subscription = await mark_subscription_status(
            db, stripe_platform.id, "sub_1", "canceled", canceled_at=PAID_AT,
        )
        assert subscription.status == "canceled"
        assert subscription.canceled_at == PAID_AT

    async def test_cancel_defaults_canceled_at(self, db, stripe_platform):
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(subscription=_subscription()))
        subscription = await mark_subscription_status(db, stripe_platform.id, "sub_1", "canceled")
        assert subscription.canceled_at is not None

    async def test_past_due_keeps_canceled_at_empty(self, db, stripe_platform):
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(subscription=_subscription()))
        subscription = await mark_subscription_status(db, stripe_platform.id, "sub_1", "past_due")
        assert subscription.status == "past_due"
        assert subscription.canceled_at is None

    async def test_missing_rows_are_skipped(self, db, stripe_platform):
        assert await mark_subscription_status(db, stripe_platform.id, "sub_x", "canceled") is None
        assert await mark_transaction_refunded(db, stripe_platform.id, "ch_x") is None
        assert await mark_transaction_refunded(db, stripe_platform.id, None) is None
        assert await mark_order_status(db, stripe_platform.id, "ord_x", "refunded") is None

    async def test_refund_transaction(self, db, stripe_platform):
        await persist_fragment(db, stripe_platform.id, PersistenceFragment(transaction=_transaction()))
        transaction = await mark_transaction_refunded(db, stripe_platform.id, "ch_1", refunded_at=PAID_AT)
        assert transaction.status == "refunded"
        assert transaction.refunded_at == PAID_AT
