from ordercore.models.order import (
    Order,
    OrderItem,
    OrderStatusHistory,
    OrderStatus,
    PaymentStatus,
    PaymentMethod,
    CodStatus,
)
from ordercore.models.invoice import (
    Invoice,
    InvoiceItem,
    InvoiceGenerationTask,
    InvoiceType,
    InvoiceStatus,
    InvoiceTaskStatus,
)
from ordercore.models.product import Product, RawMaterial
from ordercore.models.ledger import LedgerEntry, LedgerSubjectType, LedgerAction
from ordercore.models.document_sequence import DocumentSequence, DocumentType
from ordercore.models.audit_log import AuditLog

__all__ = [
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "CodStatus",
    "Invoice",
    "InvoiceItem",
    "InvoiceGenerationTask",
    "InvoiceType",
    "InvoiceStatus",
    "InvoiceTaskStatus",
    "Product",
    "RawMaterial",
    "LedgerEntry",
    "LedgerSubjectType",
    "LedgerAction",
    "DocumentSequence",
    "DocumentType",
    "AuditLog",
]
