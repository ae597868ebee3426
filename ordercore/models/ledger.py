import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ordercore.database import Base
from ordercore.db_types import UUIDType


class LedgerSubjectType(str, Enum):
    """Balances tracked through the ledger."""
    PRODUCT_STOCK = "product_stock"
    RAW_MATERIAL = "raw_material"


class LedgerAction(str, Enum):
    ADD = "add"        # Positive movement
    USE = "use"        # Consumption, stored as a negative delta
    ADJUST = "adjust"  # Signed correction
    UPDATE = "update"  # Set an absolute balance; delta is derived


class LedgerEntry(Base):
    """
    Immutable record of one balance change.

    new_balance == previous_balance + delta. Entries of a subject are
    numbered by sequence_no; replaying them in that order from zero
    reproduces the stored balance.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint(
            "subject_type", "subject_id", "sequence_no",
            name="uq_ledger_subject_sequence"
        ),
        Index('ix_ledger_subject', 'subject_type', 'subject_id'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    subject_type: Mapped[str] = mapped_column(String(30), nullable=False)
    subject_id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)

    action_type: Mapped[str] = mapped_column(String(20), nullable=False)
    delta: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    previous_balance: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    new_balance: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)

    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # What caused the movement, e.g. ("order", order_id)
    reference_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry({self.subject_type}:{self.subject_id} #{self.sequence_no} "
            f"{self.previous_balance} -> {self.new_balance})>"
        )
