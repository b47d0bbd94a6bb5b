"""
Customer model - buyers as seen by each payment platform.
Keyed by (platform_id, external_customer_id). total_spent is in minor units.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, BigInteger, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    platform_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("platforms.id"), nullable=False, index=True
    )
    external_customer_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Contact info
    email: Mapped[Optional[str]] = mapped_column(String(255))
    name: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    document: Mapped[Optional[str]] = mapped_column(String(50))
    document_type: Mapped[Optional[str]] = mapped_column(String(20))  # cpf, cnpj

    # Address
    country: Mapped[Optional[str]] = mapped_column(String(50))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    zip_code: Mapped[Optional[str]] = mapped_column(String(20))
    address_line1: Mapped[Optional[str]] = mapped_column(String(255))
    address_line2: Mapped[Optional[str]] = mapped_column(String(255))

    total_spent: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    first_purchase_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_purchase_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # "metadata" is reserved on declarative classes
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
        UniqueConstraint("platform_id", "external_customer_id", name="uq_customers_platform_external"),
    )

    def __repr__(self) -> str:
        return f"<Customer {self.external_customer_id}>"
