"""
User models - local mirror of an external identity plus purchase behavior.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Boolean, Integer, DateTime, Numeric, ForeignKey, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TimestampMixin


def default_preferences() -> dict:
    return {
        "email_notifications": True,
        "sms_notifications": False,
        "newsletter_subscription": False,
    }


def default_payment_preferences() -> dict:
    return {
        "default_payment_method": "card",
        "save_payment_methods": True,
        "auto_save_cards": False,
    }


class User(Base, UUIDMixin, TimestampMixin):
    """
    One record per identity-provider user.
    Profile fields are mirrored from the provider; statistics are derived
    from Order/Payment records by the reconciliation services.
    """
    __tablename__ = "users"

    external_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(255), default="")
    last_name: Mapped[str] = mapped_column(String(255), default="")
    username: Mapped[str] = mapped_column(String(255), default="")
    profile_image_url: Mapped[str] = mapped_column(String(1024), default="")
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    last_sign_in: Mapped[Optional[datetime]] = mapped_column(DateTime)
    phone_number: Mapped[str] = mapped_column(String(50), default="")

    addresses: Mapped[list] = mapped_column(JSON, default=list)
    preferences: Mapped[dict] = mapped_column(JSON, default=default_preferences)

    # Purchase statistics
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    total_spent: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    last_order_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    payment_methods_used: Mapped[list] = mapped_column(JSON, default=list)  # [{"type", "last_used"}]
    total_refunds: Mapped[int] = mapped_column(Integer, default=0)
    total_refund_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))

    payment_preferences: Mapped[dict] = mapped_column(JSON, default=default_payment_preferences)
    saved_payment_methods: Mapped[list] = mapped_column(JSON, default=list)
    reviews: Mapped[list] = mapped_column(JSON, default=list)   # [{"product_id", "rating", "comment", "created_at"}]
    wishlist: Mapped[list] = mapped_column(JSON, default=list)  # product ids
    cart: Mapped[list] = mapped_column(JSON, default=list)      # [{"product_id", "quantity"}]
    metadata_json: Mapped[dict] = mapped_column(JSON, default=dict)

    order_history: Mapped[List["UserOrderEntry"]] = relationship(
        "UserOrderEntry",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="UserOrderEntry.created_at",
    )

    __table_args__ = (
        Index("idx_user_email", "email"),
    )

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.username or self.email


class UserOrderEntry(Base, UUIDMixin):
    """Denormalized order summary cached on the user for fast listing."""
    __tablename__ = "user_order_entries"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    order_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", back_populates="order_history")

    __table_args__ = (
        Index("idx_user_order_entry_user", "user_id"),
        Index("idx_user_order_entry_order", "order_id"),
    )
