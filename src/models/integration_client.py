"""
Integration client - an external system allowed to push issues into the ticket desk.
Owns API keys and webhook subscriptions. One well-known row represents the system itself.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from src.database import Base


class IntegrationClient(Base):
    __tablename__ = "integration_clients"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<IntegrationClient {self.name}>"


class IntegrationApiKey(Base):
    """
    API key credential. The raw bearer token is "<id>.<secret>"; only an argon2id
    hash of the secret half is stored.
    """
    __tablename__ = "integration_api_keys"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("integration_clients.id"), nullable=False
    )
    key_hash: Mapped[str] = mapped_column(Text, nullable=False)
    scopes: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    client: Mapped["IntegrationClient"] = relationship(lazy="joined")

    __table_args__ = (
        Index("ix_integration_api_keys_client_id", "client_id"),
    )

    def __repr__(self) -> str:
        return f"<IntegrationApiKey {str(self.id)[:8]} client={str(self.client_id)[:8]}>"
