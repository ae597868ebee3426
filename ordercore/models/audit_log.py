import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from ordercore.database import Base
from ordercore.db_types import JSONType, UUIDType


class AuditLog(Base):
    """
    Audit trail for state changes that carry no numeric balance:
    COD custody moves, payment confirmations, invoice voids and
    administrative deletions.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index('ix_audit_entity', 'entity_type', 'entity_id'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Who performed the action
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    # Actions: COD_COLLECTED, COD_SETTLED, PAYMENT_CONFIRMED, INVOICE_VOIDED, ORDER_DELETED, ...
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Entity types: ORDER, INVOICE
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    old_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', entity='{self.entity_type}', id='{self.entity_id}')>"
