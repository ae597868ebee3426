import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, List
from decimal import Decimal

from sqlalchemy import String, Boolean, Date, DateTime, ForeignKey, Integer, Text, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ordercore.database import Base
from ordercore.db_types import JSONType, UUIDType


class OrderStatus(str, Enum):
    """Fulfillment status. DELIVERED and CANCELLED are terminal."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PACKING = "packing"
    WAITING_FOR_PICKUP = "waiting-for-pickup"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class PaymentMethod(str, Enum):
    """Set once at order creation."""
    ONLINE = "online"
    COD = "cod"


class CodStatus(str, Enum):
    """Custody of cash for cash-on-delivery orders."""
    PENDING = "pending"                            # Not yet collected
    COLLECTED_BY_COURIER = "collected_by_courier"  # Cash with the courier
    AWAITING_SETTLEMENT = "awaiting_settlement"    # Remitted, not yet in bank
    SETTLED = "settled"                            # Confirmed in bank
    RECEIVED = "received"                          # Legacy name for SETTLED
    NOT_RECEIVED = "not_received"                  # Exception, manual reconciliation


class Order(Base):
    """
    Customer order from checkout to delivery.

    Status and COD fields change only through OrderService.transition and
    CodSettlementService. total_amount == subtotal + shipping_amount + tax_amount.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index('ix_order_status_created', 'status', 'created_at'),
        Index('ix_order_payment_status', 'payment_status', 'created_at'),
        Index('ix_order_cod_status', 'cod_status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    order_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True
    )

    status: Mapped[str] = mapped_column(
        String(30),
        default=OrderStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    # Buyer
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    customer_gstin: Mapped[Optional[str]] = mapped_column(String(15), nullable=True)

    # Snapshot taken at checkout, never updated from the address book
    shipping_address: Mapped[dict] = mapped_column(JSONType, nullable=False)

    # Pricing (all in INR)
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Sum of line totals before tax"
    )
    shipping_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="subtotal + shipping_amount + tax_amount"
    )

    # Payment
    payment_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="online, cod"
    )
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
    )
    payment_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="Gateway payment id"
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Cash on delivery
    cod_status: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        comment="Only set for cod orders"
    )
    cod_courier_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cod_confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cod_confirmed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    cod_collected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cod_settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Shipment
    courier_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tracking_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tracking_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    expected_delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.position",
    )

    @property
    def is_cod(self) -> bool:
        return self.payment_method == PaymentMethod.COD.value

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    @property
    def buyer_state(self) -> Optional[str]:
        return (self.shipping_address or {}).get("state")

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """Order line. line_total is quantity * unit_price, before tax."""
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Product snapshot (stored for historical record)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_sku: Mapped[str] = mapped_column(String(50), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Rate resolved at order time; proforma and final invoices both read it
    gst_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        default=Decimal("18.00"),
        nullable=False
    )
    gst_rate_defaulted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Product had no GST rate; default applied"
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItem(product='{self.product_name}', qty={self.quantity})>"


class OrderStatusHistory(Base):
    """Order status change history."""
    __tablename__ = "order_status_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)

    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<OrderStatusHistory(from='{self.from_status}', to='{self.to_status}')>"
