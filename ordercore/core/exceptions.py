"""
Service-layer exceptions.

Services raise these; ``ordercore.api.errors`` maps each class to an HTTP
status in one place so endpoints never translate errors by hand.
"""

from typing import Any, Dict, Optional


class OrderCoreError(Exception):
    """Base class for all domain errors."""

    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(OrderCoreError):
    """Referenced order, invoice, product or ledger subject does not exist."""


class ValidationError(OrderCoreError):
    """Input rejected synchronously; nothing was written."""


class InvalidTransitionError(ValidationError):
    """Requested order status change is not allowed from the current status."""


class CodSettlementError(ValidationError):
    """Requested COD custody change is not allowed."""


class InsufficientBalanceError(ValidationError):
    """A ledger movement would take a balance below zero."""


class PaymentConflictError(OrderCoreError):
    """Order is already paid under a different payment id."""


class TaxReconciliationError(OrderCoreError):
    """Computed tax totals do not reconcile with the order total."""


class DocumentNumberCollisionError(OrderCoreError):
    """An allocated document number already exists. Numbering is misconfigured."""


class InvoiceNumberCollisionError(DocumentNumberCollisionError):
    """An allocated invoice number already exists."""


class StorageUnavailableError(OrderCoreError):
    """Storage stayed unavailable after bounded retries. Safe to retry."""

    retryable = True
