"""
Catalog models - the Category -> Subcategory -> Product tree.
"""

from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String, Text, Boolean, Integer, Numeric, ForeignKey, ForeignKeyConstraint,
    Index, UniqueConstraint, CheckConstraint, JSON,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TimestampMixin


class Category(Base, UUIDMixin, TimestampMixin):
    """Top level of the catalog tree."""
    __tablename__ = "categories"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    image: Mapped[Optional[dict]] = mapped_column(JSON)  # {"public_id": ..., "url": ...}

    subcategories: Mapped[List["Subcategory"]] = relationship(
        "Subcategory", back_populates="category", passive_deletes=True
    )


class Subcategory(Base, UUIDMixin, TimestampMixin):
    """Second level; names are unique within their category."""
    __tablename__ = "subcategories"

    name: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    category_id: Mapped[str] = mapped_column(ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    category: Mapped["Category"] = relationship("Category", back_populates="subcategories", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("name", "category_id", name="uq_subcategory_name_category"),
        # Target of the product cross-reference key
        UniqueConstraint("id", "category_id", name="uq_subcategory_id_category"),
        Index("idx_subcategory_category", "category_id"),
    )


class Product(Base, UUIDMixin, TimestampMixin):
    """
    Sellable item. Its category must be the category of its subcategory;
    the composite foreign key makes the store enforce that pairing.
    """
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    images: Mapped[list] = mapped_column(JSON, default=list)  # [{"public_id": ..., "url": ...}]
    category_id: Mapped[str] = mapped_column(String(36), nullable=False)
    subcategory_id: Mapped[str] = mapped_column(String(36), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    category: Mapped["Category"] = relationship(
        "Category", foreign_keys=[category_id], primaryjoin="Product.category_id == Category.id",
        viewonly=True, lazy="selectin",
    )
    subcategory: Mapped["Subcategory"] = relationship(
        "Subcategory", foreign_keys=[subcategory_id], primaryjoin="Product.subcategory_id == Subcategory.id",
        viewonly=True, lazy="selectin",
    )

    __table_args__ = (
        ForeignKeyConstraint(
            ["subcategory_id", "category_id"],
            ["subcategories.id", "subcategories.category_id"],
            name="fk_product_subcategory_category",
            ondelete="CASCADE",
            onupdate="CASCADE",
        ),
        ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="CASCADE"),
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
        Index("idx_product_category_subcategory", "category_id", "subcategory_id"),
        Index("idx_product_price", "price"),
    )
