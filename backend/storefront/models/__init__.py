"""
SQLAlchemy Models for the Storefront backend.

This package is organized by domain:
- base.py: Base class and mixins
- catalog.py: Category, Subcategory, Product
- user.py: User and the denormalized order history
- order.py: Order and line items
- payment.py: Payment ledger and refunds
- admin.py: Back-office accounts
"""

# Base
from storefront.models.base import Base, UUIDMixin, TimestampMixin

# Catalog
from storefront.models.catalog import Category, Subcategory, Product

# Customers and purchases
from storefront.models.user import User, UserOrderEntry
from storefront.models.order import Order, OrderItem, OrderStatus, PaymentChannel
from storefront.models.payment import Payment, PaymentRefund, PaymentStatus, PaymentMethod

# Back office
from storefront.models.admin import Admin


__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",

    # Catalog
    "Category",
    "Subcategory",
    "Product",

    # Customers and purchases
    "User",
    "UserOrderEntry",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentChannel",
    "Payment",
    "PaymentRefund",
    "PaymentStatus",
    "PaymentMethod",

    # Back office
    "Admin",
]
