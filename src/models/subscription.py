"""
Subscription model - canonical subscription state across all platforms.
Status: trial_active, active, past_due, canceled, expired, paused.
Amounts are integers in minor units.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import (
    String, Integer, BigInteger, Boolean, DateTime, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    platform_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("platforms.id"), nullable=False
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), index=True
    )
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id")
    )

    external_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_customer_id: Mapped[Optional[str]] = mapped_column(String(255))
    external_product_id: Mapped[Optional[str]] = mapped_column(String(255))
    external_price_id: Mapped[Optional[str]] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Trial
    is_trial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    trial_amount: Mapped[Optional[int]] = mapped_column(BigInteger)
    trial_currency: Mapped[Optional[str]] = mapped_column(String(3))
    trial_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    trial_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Billing
    recurring_amount: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    recurring_currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    billing_period: Mapped[str] = mapped_column(String(10), default="month", nullable=False)
    billing_interval: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    current_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    current_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    next_billing_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

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
            "platform_id", "external_subscription_id", name="uq_subscriptions_platform_external"
        ),
        Index("ix_subscriptions_status", "platform_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Subscription {self.external_subscription_id} ({self.status})>"
