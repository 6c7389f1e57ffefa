"""
Shared fixtures: an in-memory SQLite database, a Razorpay adapter with the
HTTP calls replaced, and an identity provider that trusts "token-<id>" bearers.
"""

import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "test_key_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test_webhook_secret")
os.environ.setdefault("CLERK_WEBHOOK_SECRET", "whsec_dGVzdC1jbGVyay13ZWJob29rLXNlY3JldA==")

import json
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront.adapters import signatures
from storefront.adapters.base import GatewayOrder, IdentityProfile, IdentityProviderAdapter
from storefront.adapters.razorpay import RazorpayGatewayAdapter
from storefront.config import StatsPolicy
from storefront.database import enable_sqlite_foreign_keys
from storefront.exceptions import AuthenticationFailed, SignatureMismatch
from storefront.models import Base, User
from storefront.models.base import new_id
from storefront.services.statistics import StatisticsService

KEY_SECRET = os.environ["RAZORPAY_KEY_SECRET"]
WEBHOOK_SECRET = os.environ["RAZORPAY_WEBHOOK_SECRET"]
CLERK_WEBHOOK_SECRET = os.environ["CLERK_WEBHOOK_SECRET"]


class FakeRazorpay(RazorpayGatewayAdapter):
    """Real signature checks; the REST calls are recorded instead of sent."""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret=KEY_SECRET, webhook_secret=WEBHOOK_SECRET)
        self.created_orders = []
        self.refund_requests = []
        self.payment_entities = {}
        self._sequence = 0

    async def create_order(self, amount, currency, receipt):
        self._sequence += 1
        order = GatewayOrder(id=f"order_test{self._sequence}", amount=amount, currency=currency, receipt=receipt)
        self.created_orders.append(order)
        return order

    async def fetch_payment(self, payment_id):
        return self.payment_entities.get(payment_id, {
            "id": payment_id,
            "method": "card",
            "card": {"last4": "4242", "network": "Visa", "issuer": "HDFC"},
        })

    async def create_refund(self, payment_id, amount=None):
        self.refund_requests.append((payment_id, amount))
        return {"id": f"rfnd_{payment_id}", "payment_id": payment_id, "status": "pending"}


class FakeIdentity(IdentityProviderAdapter):
    """Bearer "token-<external id>" is valid; profiles come from `profiles`."""

    def __init__(self):
        self.profiles = {}

    async def verify_session_token(self, token):
        if not token.startswith("token-"):
            raise AuthenticationFailed("Invalid or expired session token")
        return token[len("token-"):]

    async def fetch_user(self, external_id):
        return self.profiles.get(external_id) or IdentityProfile(
            external_id=external_id,
            email=f"{external_id}@example.com",
            first_name="Test",
            last_name="Shopper",
            email_verified=True,
        )

    def parse_webhook(self, raw_body, headers):
        if not signatures.verify_svix_signature(raw_body, headers, CLERK_WEBHOOK_SECRET):
            raise SignatureMismatch("Invalid webhook signature")
        return json.loads(raw_body)


def sign_webhook(body: dict) -> tuple:
    raw = json.dumps(body).encode("utf-8")
    return raw, signatures.webhook_signature(raw, WEBHOOK_SECRET)


def checkout_signature(order_id: str, payment_id: str) -> str:
    return signatures.payment_signature(order_id, payment_id, KEY_SECRET)


def order_payload(method="razorpay", total=500, **overrides):
    data = {
        "items": [{"product_id": new_id(), "name": "Linen Shirt", "quantity": 2, "price": 250}],
        "shipping_address": {"street": "12 MG Road", "city": "Bengaluru", "country": "IN"},
        "payment": {"method": method},
        "subtotal": total,
        "shipping_cost": 0,
        "tax": 0,
        "total": total,
    }
    data.update(overrides)
    return data


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeRazorpay()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def stats(db):
    return StatisticsService(db, policy=StatsPolicy.OPTIMISTIC)


@pytest.fixture
def make_user(db):
    async def _make(external_id=None, **fields):
        external_id = external_id or f"user_{new_id()[:8]}"
        user = User(
            id=new_id(),
            external_id=external_id,
            email=fields.pop("email", f"{external_id}@example.com"),
            total_orders=0,
            total_spent=Decimal("0"),
            total_refunds=0,
            total_refund_amount=Decimal("0"),
            payment_methods_used=[],
            **fields,
        )
        db.add(user)
        await db.flush()
        return user
    return _make
