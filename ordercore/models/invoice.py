"""
Invoice models.

An order gets one proforma invoice at placement and exactly one active final
tax invoice at delivery. ``final_order_id`` carries the order id only on an
active final invoice; its unique constraint is what makes concurrent
delivery attempts collapse to a single final invoice. Voiding a final
invoice clears the column so a corrected one can be issued.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer,
    Numeric, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ordercore.database import Base
from ordercore.db_types import UUIDType


class InvoiceType(str, Enum):
    PROFORMA = "proforma"
    FINAL = "final"


class InvoiceStatus(str, Enum):
    ISSUED = "issued"
    VOID = "void"


class InvoiceTaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Invoice(Base):
    """GST invoice. Immutable after creation except for voiding."""
    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint(
            "(invoice_type = 'final') = is_final",
            name="ck_invoice_type_matches_is_final",
        ),
        CheckConstraint(
            "final_order_id IS NULL OR is_final",
            name="ck_invoice_final_slot_only_on_final",
        ),
        Index('ix_invoice_type_created', 'invoice_type', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    invoice_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True
    )
    invoice_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_final: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceStatus.ISSUED.value,
        nullable=False
    )

    # Manual proforma invoices have no order
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )
    final_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        unique=True,
        nullable=True,
        comment="Set only on the active final invoice of an order"
    )

    # Buyer
    client_name: Mapped[str] = mapped_column(String(200), nullable=False)
    client_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    client_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    client_state: Mapped[str] = mapped_column(String(100), nullable=False)
    client_gstin: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)

    # Seller
    seller_name: Mapped[str] = mapped_column(String(200), nullable=False)
    seller_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    seller_state: Mapped[str] = mapped_column(String(100), nullable=False)
    seller_gstin: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)

    # Totals
    is_igst: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    cgst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    sgst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    igst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    # Voiding
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    void_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        lazy="selectin",
        order_by="InvoiceItem.position",
    )

    @property
    def is_void(self) -> bool:
        return self.status == InvoiceStatus.VOID.value

    def __repr__(self) -> str:
        return f"<Invoice(number='{self.invoice_number}', type='{self.invoice_type}')>"


class InvoiceItem(Base):
    """Invoice line with its own tax breakdown."""
    __tablename__ = "invoice_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    description: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    hsn_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    taxable_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    cgst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    sgst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    igst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    def __repr__(self) -> str:
        return f"<InvoiceItem(description='{self.description}', total={self.line_total})>"


class InvoiceGenerationTask(Base):
    """
    Retry queue entry for the final invoice of a delivered order.

    Written in the same transaction as the delivered status, so the need for
    a final invoice is never lost even when generation itself fails.
    """
    __tablename__ = "invoice_generation_tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceTaskStatus.PENDING.value,
        nullable=False,
        index=True
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<InvoiceGenerationTask(order='{self.order_id}', status='{self.status}')>"
