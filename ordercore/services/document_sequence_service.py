"""
Document Sequence Service for Atomic Number Generation

- Financial year based numbering (April-March)
- Continuous sequence within a financial year (no daily reset)
- Format: {PREFIX}/{COMPANY_CODE}/{FY}/{SEQUENCE}

USAGE:
    service = DocumentSequenceService(db)
    invoice_number = await service.get_next_number(DocumentType.TAX_INVOICE)
    # Returns: INV/ARN/25-26/00001

The counter row is locked with SELECT FOR UPDATE for the rest of the
caller's transaction, so numbers are handed out in commit order and a
rolled back transaction gives its number back.
"""

import logging
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ordercore.config import settings
from ordercore.core.exceptions import ValidationError
from ordercore.models.document_sequence import DocumentSequence, DocumentType

logger = logging.getLogger(__name__)


DOCUMENT_METADATA = {
    DocumentType.ORDER.value: {"name": "Order", "padding": 5},
    DocumentType.PROFORMA_INVOICE.value: {"name": "Proforma Invoice", "padding": 5},
    DocumentType.TAX_INVOICE.value: {"name": "Tax Invoice", "padding": 5},
}


class DocumentSequenceService:
    """Hands out sequential document numbers."""

    def __init__(self, db: AsyncSession, company_code: Optional[str] = None):
        self.db = db
        self.company_code = company_code or settings.COMPANY_CODE

    @staticmethod
    def _normalize_type(document_type: Union[DocumentType, str]) -> str:
        doc_type = getattr(document_type, "value", document_type).upper()
        if doc_type not in DOCUMENT_METADATA:
            valid_types = ", ".join(DOCUMENT_METADATA.keys())
            raise ValidationError(
                f"Invalid document type '{doc_type}'. Valid types: {valid_types}",
                {"document_type": doc_type},
            )
        return doc_type

    async def get_next_number(
        self,
        document_type: Union[DocumentType, str],
        financial_year: Optional[str] = None
    ) -> str:
        """
        Increment and return the next number for a document type.

        Creates the financial year's counter on first use. Flushes but does
        not commit; the number is only final once the caller commits.
        """
        doc_type = self._normalize_type(document_type)
        financial_year = financial_year or DocumentSequence.get_financial_year()

        sequence = await self._get_or_create_sequence(doc_type, financial_year)
        doc_number = sequence.get_next_number()
        await self.db.flush()

        logger.debug(f"Allocated {doc_number}")
        return doc_number

    async def _get_or_create_sequence(self, doc_type: str, financial_year: str) -> DocumentSequence:
        result = await self.db.execute(
            select(DocumentSequence)
            .where(
                DocumentSequence.document_type == doc_type,
                DocumentSequence.financial_year == financial_year,
            )
            .with_for_update()
        )
        sequence = result.scalar_one_or_none()

        if sequence is None:
            # A concurrent creator makes this flush fail on uq_document_type_fy;
            # retry_on_contention reruns the whole operation.
            sequence = DocumentSequence(
                document_type=doc_type,
                company_code=self.company_code,
                financial_year=financial_year,
                current_number=0,
                padding_length=DOCUMENT_METADATA[doc_type]["padding"],
                separator="/",
            )
            self.db.add(sequence)
            await self.db.flush()
            logger.info(f"Created document sequence {doc_type} for FY {financial_year}")

        return sequence
