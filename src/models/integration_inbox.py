"""
Integration inbox - the idempotency ledger for inbound issues.
One row per (client, source, external_id); the unique constraint is what keeps
concurrent duplicate submissions from producing two tickets.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base

LEDGER_UNIQUE_CONSTRAINT = "uq_integration_inbox_client_source_external"


class IntegrationInbox(Base):
    __tablename__ = "integration_inbox"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("integration_clients.id"), nullable=False
    )
    source: Mapped[str] = mapped_column(String(100), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    ticket_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tickets.id")
    )
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64))

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint(
            "client_id", "source", "external_id", name=LEDGER_UNIQUE_CONSTRAINT
        ),
    )

    def __repr__(self) -> str:
        return f"<IntegrationInbox {self.source}:{self.external_id} ticket={self.ticket_id}>"
