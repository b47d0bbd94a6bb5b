"""
Affiliate model - partners credited with sales (Hotmart producers/affiliates).
Tier is recomputed from total_revenue after every credited sale.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, BigInteger, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class Affiliate(Base):
    __tablename__ = "affiliates"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    platform_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("platforms.id"), nullable=False
    )
    external_affiliate_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255))

    tier: Mapped[str] = mapped_column(
        String(20), default="bronze", nullable=False
    )  # bronze, silver, gold, diamond
    total_sales_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_revenue: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    first_sale_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_sale_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint(
            "platform_id", "external_affiliate_id", name="uq_affiliates_platform_external"
        ),
    )

    def __repr__(self) -> str:
        return f"<Affiliate {self.external_affiliate_id} ({self.tier})>"
