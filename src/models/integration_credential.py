"""
Integration credentials - Fernet-encrypted secrets per platform and environment.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class IntegrationCredential(Base):
    __tablename__ = "integration_credentials"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    platform_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("platforms.id"), nullable=False
    )
    credential_type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # api_secret_key, api_key, client_id, client_secret, basic_token
    environment: Mapped[str] = mapped_column(
        String(20), default="sandbox", nullable=False
    )  # sandbox, production
    encrypted_value: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index(
            "ix_integration_credentials_lookup",
            "platform_id", "environment", "credential_type",
        ),
    )

    def __repr__(self) -> str:
        return f"<IntegrationCredential {self.credential_type} ({self.environment})>"
