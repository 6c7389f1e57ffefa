"""
Adapter interfaces for the two external collaborators of the reconciliation flow.

PaymentGatewayAdapter  — creates gateway orders, fetches payments, requests refunds,
                         and checks the gateway's signatures.
IdentityProviderAdapter — verifies bearer session tokens, fetches user profiles,
                          and checks identity webhook signatures.

Services depend on these interfaces only. The concrete adapter is resolved
by storefront.adapters.registry and can be swapped in tests through FastAPI
dependency overrides.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Any


# ---------------------------------------------------------------------------
# Normalized data models
# ---------------------------------------------------------------------------

@dataclass
class GatewayOrder:
    """A provisional transaction (payment intent) created at the gateway."""
    id: str
    amount: int                     # Minor units (paise)
    currency: str
    receipt: Optional[str] = None
    status: str = "created"


@dataclass
class GatewayEvent:
    """A verified webhook event from the payment gateway."""
    event_type: str                 # "payment.captured", "payment.failed", "refund.created", ...
    payload: Dict[str, Any]         # The event's "payload" object
    received_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class IdentityProfile:
    """A user profile as reported by the identity provider."""
    external_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    username: str = ""
    profile_image_url: str = ""
    email_verified: bool = False
    phone_number: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


class PaymentGatewayAdapter(ABC):
    """Contract for the payment gateway used by the reconciliation services."""

    @property
    @abstractmethod
    def gateway_name(self) -> str:
        pass

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def create_order(self, amount: int, currency: str, receipt: str) -> GatewayOrder:
        """Create a gateway order for `amount` minor units."""
        pass

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        """Return the gateway's authoritative payment entity."""
        pass

    @abstractmethod
    async def create_refund(self, payment_id: str, amount: Optional[int] = None) -> Dict[str, Any]:
        """Request a refund. `amount` in minor units; None refunds in full."""
        pass

    @abstractmethod
    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Check the signature handed to the client after checkout."""
        pass

    @abstractmethod
    def parse_webhook(self, raw_body: bytes, signature: Optional[str]) -> GatewayEvent:
        """
        Verify the webhook signature over the raw body and parse the event.
        Raises SignatureMismatch before any parsing when verification fails.
        """
        pass


class IdentityProviderAdapter(ABC):
    """Contract for the external identity provider."""

    @abstractmethod
    async def verify_session_token(self, token: str) -> str:
        """Return the external user id for a valid bearer token."""
        pass

    @abstractmethod
    async def fetch_user(self, external_id: str) -> IdentityProfile:
        pass

    @abstractmethod
    def parse_webhook(self, raw_body: bytes, headers: Dict[str, str]) -> Dict[str, Any]:
        """Verify and decode an identity webhook. Raises SignatureMismatch."""
        pass
