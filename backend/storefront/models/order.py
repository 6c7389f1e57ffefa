"""
Order models - purchases and their line items.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Text, Boolean, Integer, Numeric, ForeignKey, Index, JSON, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TimestampMixin


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentChannel(str, Enum):
    """Top-level payment method of an order."""
    RAZORPAY = "razorpay"
    COD = "cod"


class Order(Base, UUIDMixin, TimestampMixin):
    """
    A purchase. The payment_* columns are the order's embedded view of its
    payment; the Payment ledger row is authoritative for gateway details.
    """
    __tablename__ = "orders"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    order_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING.value, nullable=False)

    shipping_address: Mapped[Optional[dict]] = mapped_column(JSON)
    billing_address: Mapped[Optional[dict]] = mapped_column(JSON)

    # Embedded payment sub-record
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    payment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_currency: Mapped[str] = mapped_column(String(3), default="INR")
    payment_sub_method: Mapped[Optional[str]] = mapped_column(String(20))
    gateway_order_id: Mapped[Optional[str]] = mapped_column(String(64))
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(64))
    gateway_signature: Mapped[Optional[str]] = mapped_column(String(128))

    shipping: Mapped[dict] = mapped_column(JSON, default=lambda: {"method": "standard"})
    discounts: Mapped[list] = mapped_column(JSON, default=list)  # [{"code", "amount", "type"}]

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text)
    metadata_json: Mapped[dict] = mapped_column(JSON, default=dict)
    status_history: Mapped[list] = mapped_column(JSON, default=list)
    stats_applied: Mapped[bool] = mapped_column(Boolean, default=False)

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        Index("idx_order_user", "user_id"),
        Index("idx_order_payment_status", "payment_status"),
        Index("idx_order_status", "status"),
        Index("idx_order_created", "created_at"),
    )


class OrderItem(Base, UUIDMixin):
    """
    Line item snapshot. product_id is a plain reference, not a foreign key:
    orders outlive catalog deletes and may carry generated ids.
    """
    __tablename__ = "order_items"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    image: Mapped[Optional[str]] = mapped_column(String(1024))
    variant: Mapped[Optional[dict]] = mapped_column(JSON)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_item_quantity_positive"),
        Index("idx_orderitem_order", "order_id"),
        Index("idx_orderitem_product", "product_id"),
    )
