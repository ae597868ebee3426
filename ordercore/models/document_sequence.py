"""
Document Sequence Model for Atomic Number Generation

- Financial year based numbering (April-March)
- Continuous sequence within a financial year (no daily reset)
- Row locked with SELECT FOR UPDATE while incrementing
- Format: {PREFIX}/{COMPANY_CODE}/{FY}/{SEQUENCE}

DOCUMENT FORMATS:
    ORD: ORD/ARN/25-26/00001  (Order)
    PRO: PRO/ARN/25-26/00001  (Proforma Invoice)
    INV: INV/ARN/25-26/00001  (Final Tax Invoice)
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ordercore.database import Base
from ordercore.db_types import UUIDType


class DocumentType(str, Enum):
    """Document types that use sequence numbering."""
    ORDER = "ORD"
    PROFORMA_INVOICE = "PRO"
    TAX_INVOICE = "INV"


class DocumentSequence(Base):
    """
    One counter per document type and financial year.

    Example:
        document_type = "INV"
        financial_year = "25-26"
        current_number = 42
        -> Next number: INV/ARN/25-26/00043
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint(
            "document_type", "financial_year",
            name="uq_document_type_fy"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    document_type: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    company_code: Mapped[str] = mapped_column(String(10), nullable=False)
    financial_year: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="e.g., 25-26 for FY 2025-26"
    )
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )
    padding_length: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    separator: Mapped[str] = mapped_column(String(5), default="/", nullable=False)

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

    def format_number(self, number: int) -> str:
        seq = str(number).zfill(self.padding_length)
        sep = self.separator
        return f"{self.document_type}{sep}{self.company_code}{sep}{self.financial_year}{sep}{seq}"

    def get_next_number(self) -> str:
        """
        Increment the counter and return the formatted number.

        Does NOT flush; the caller owns the transaction.
        """
        self.current_number += 1
        return self.format_number(self.current_number)

    @staticmethod
    def get_financial_year(now: Optional[datetime] = None) -> str:
        """
        Indian financial year: April to March
        - Jan 2026 -> FY 25-26
        - Apr 2026 -> FY 26-27
        """
        now = now or datetime.now(timezone.utc)
        if now.month >= 4:
            fy_start = now.year
        else:
            fy_start = now.year - 1
        fy_end = fy_start + 1
        return f"{fy_start % 100:02d}-{fy_end % 100:02d}"

    def __repr__(self) -> str:
        return f"<DocumentSequence({self.document_type}/{self.financial_year}: {self.current_number})>"
