"""
Sync log - one row per reconciliation run per (platform, sync type).
Created as running; updated exactly once to completed or failed.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class SyncLog(Base):
    __tablename__ = "sync_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    platform_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("platforms.id"), nullable=False
    )
    sync_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # subscriptions, transactions, customers
    status: Mapped[str] = mapped_column(
        String(20), default="running", nullable=False
    )  # running, completed, failed

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    records_synced: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    missing_records_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_details: Mapped[Optional[dict]] = mapped_column(JSONB)

    __table_args__ = (
        Index("ix_sync_logs_platform_started", "platform_id", "sync_type", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<SyncLog {self.sync_type} ({self.status})>"
