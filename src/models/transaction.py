"""
Transaction model - payments, one-time charges and refunds.
TransactionSubscription allocates a transaction amount to a subscription.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, BigInteger, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    platform_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("platforms.id"), nullable=False
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), index=True
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id")
    )

    external_transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_customer_id: Mapped[Optional[str]] = mapped_column(String(255))
    external_subscription_id: Mapped[Optional[str]] = mapped_column(String(255))
    external_invoice_id: Mapped[Optional[str]] = mapped_column(String(255))

    transaction_type: Mapped[str] = mapped_column(
        String(30), nullable=False
    )  # subscription_payment, one_time_payment, refund
    status: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # pending, succeeded, failed, refunded
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(30))

    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    # Set once customer and affiliate totals include this sale
    sale_recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSONB, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint(
            "platform_id", "external_transaction_id", name="uq_transactions_platform_external"
        ),
        Index("ix_transactions_date", "platform_id", "transaction_date"),
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.external_transaction_id} ({self.status})>"


class TransactionSubscription(Base):
    __tablename__ = "transaction_subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("transactions.id"), nullable=False
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id"), nullable=False
    )
    amount_allocated: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("transaction_id", "subscription_id", name="uq_transaction_subscription"),
    )
