"""
Adapter resolution.

Routers never construct an adapter. They declare a dependency on
get_payment_gateway / get_identity_provider and call the interface methods
on whatever comes back; tests override these dependencies with fakes.
"""

from functools import lru_cache

from storefront.adapters.base import PaymentGatewayAdapter, IdentityProviderAdapter
from storefront.config import get_settings


@lru_cache()
def get_payment_gateway() -> PaymentGatewayAdapter:
    from storefront.adapters.razorpay import RazorpayGatewayAdapter

    settings = get_settings()
    return RazorpayGatewayAdapter(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
        base_url=settings.RAZORPAY_API_URL,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )


@lru_cache()
def get_identity_provider() -> IdentityProviderAdapter:
    from storefront.adapters.clerk import ClerkIdentityAdapter

    settings = get_settings()
    return ClerkIdentityAdapter(
        secret_key=settings.CLERK_SECRET_KEY,
        webhook_secret=settings.CLERK_WEBHOOK_SECRET,
        jwt_key=settings.CLERK_JWT_KEY,
        jwks_url=settings.CLERK_JWKS_URL,
        api_url=settings.CLERK_API_URL,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )
