"""
Router Dependencies
====================

Shared FastAPI dependencies for services that need the request's session
and the configured adapters.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.adapters.base import PaymentGatewayAdapter
from storefront.adapters.registry import get_payment_gateway
from storefront.database import get_db
from storefront.services.orders import OrderService
from storefront.services.payments import PaymentService


async def get_order_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGatewayAdapter = Depends(get_payment_gateway),
) -> OrderService:
    return OrderService(db, gateway)


async def get_payment_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGatewayAdapter = Depends(get_payment_gateway),
) -> PaymentService:
    return PaymentService(db, gateway)
