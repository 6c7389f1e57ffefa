"""
Payment models - gateway transaction ledger and refunds.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, DateTime, Numeric, ForeignKey, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TimestampMixin

PENDING_PLACEHOLDER = "pending"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """Sub-method: the instrument the payer used at the gateway."""
    PENDING = "pending"
    CARD = "card"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    UPI = "upi"
    EMI = "emi"


class Payment(Base, UUIDMixin, TimestampMixin):
    """
    Correlates one Order with one gateway transaction.
    Re-issuing a payment intent updates this row in place.
    """
    __tablename__ = "payments"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    gateway_order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    gateway_payment_id: Mapped[str] = mapped_column(String(64), nullable=False, default=PENDING_PLACEHOLDER)
    gateway_signature: Mapped[str] = mapped_column(String(128), nullable=False, default=PENDING_PLACEHOLDER)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR")
    status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), default=PaymentMethod.PENDING.value, nullable=False)
    payment_details: Mapped[dict] = mapped_column(JSON, default=dict)
    metadata_json: Mapped[dict] = mapped_column(JSON, default=dict)

    refunds: Mapped[List["PaymentRefund"]] = relationship(
        "PaymentRefund",
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PaymentRefund.created_at",
    )

    __table_args__ = (
        Index("idx_payment_gateway_order", "gateway_order_id"),
        Index("idx_payment_gateway_payment", "gateway_payment_id"),
        Index("idx_payment_user", "user_id"),
        Index("idx_payment_status", "status"),
    )

    @property
    def refunded_amount(self) -> Decimal:
        return sum((r.amount for r in self.refunds if r.status == "processed"), Decimal("0"))


class PaymentRefund(Base, UUIDMixin):
    """A refund entry recorded against a payment."""
    __tablename__ = "payment_refunds"

    payment_id: Mapped[str] = mapped_column(ForeignKey("payments.id", ondelete="CASCADE"), nullable=False)
    gateway_refund_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="processed")  # pending, processed, failed
    reason: Mapped[str] = mapped_column(String(255), default="Customer request")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    payment: Mapped["Payment"] = relationship("Payment", back_populates="refunds")
