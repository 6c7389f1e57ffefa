"""
ClerkIdentityAdapter — Clerk implementation of IdentityProviderAdapter.

Session tokens are RS256 JWTs. They are verified with the instance's PEM
public key when configured, otherwise with the JWKS document fetched once
and cached on the adapter. Profiles come from the Clerk Backend API and
webhooks are signed with the Svix scheme.
"""

import json
import logging
from typing import Dict, Optional, Any

import httpx
from jose import JWTError, jwt

from storefront.adapters.base import IdentityProviderAdapter, IdentityProfile
from storefront.adapters import signatures
from storefront.exceptions import AuthenticationFailed, SignatureMismatch, UpstreamError, ValidationFailed

logger = logging.getLogger(__name__)


def profile_from_payload(data: Dict[str, Any]) -> IdentityProfile:
    """Normalize a Clerk user object (API response or webhook `data`)."""
    emails = data.get("email_addresses") or []
    primary_id = data.get("primary_email_address_id")
    primary = next((e for e in emails if e.get("id") == primary_id), emails[0] if emails else {})
    phones = data.get("phone_numbers") or []

    return IdentityProfile(
        external_id=data["id"],
        email=primary.get("email_address", ""),
        first_name=data.get("first_name") or "",
        last_name=data.get("last_name") or "",
        username=data.get("username") or "",
        profile_image_url=data.get("profile_image_url") or data.get("image_url") or "",
        email_verified=(primary.get("verification") or {}).get("status") == "verified",
        phone_number=phones[0].get("phone_number", "") if phones else "",
        metadata=data.get("public_metadata") or {},
    )


class ClerkIdentityAdapter(IdentityProviderAdapter):

    ALGORITHMS = ["RS256"]

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str],
        jwt_key: Optional[str] = None,
        jwks_url: Optional[str] = None,
        api_url: str = "https://api.clerk.com/v1",
        timeout: float = 15.0,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.jwt_key = jwt_key
        self.jwks_url = jwks_url
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._jwks: Optional[Dict[str, Any]] = None

    async def _verification_key(self) -> Any:
        if self.jwt_key:
            return self.jwt_key
        if self._jwks is None:
            url = self.jwks_url or f"{self.api_url}/jwks"
            headers = {"Authorization": f"Bearer {self.secret_key}"} if self.secret_key else {}
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, headers=headers)
                    response.raise_for_status()
                    self._jwks = response.json()
            except httpx.HTTPError as e:
                logger.error(f"Failed to fetch Clerk JWKS: {e}")
                raise UpstreamError("clerk", "could not load signing keys") from e
        return self._jwks

    async def verify_session_token(self, token: str) -> str:
        key = await self._verification_key()
        try:
            claims = jwt.decode(token, key, algorithms=self.ALGORITHMS, options={"verify_aud": False})
        except JWTError as e:
            logger.info(f"Rejected identity token: {e}")
            raise AuthenticationFailed("Invalid or expired session token") from e

        external_id = claims.get("sub")
        if not external_id:
            raise AuthenticationFailed("Session token has no subject")
        return external_id

    async def fetch_user(self, external_id: str) -> IdentityProfile:
        if not self.secret_key:
            raise UpstreamError("clerk", "secret key is not configured")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.api_url}/users/{external_id}",
                    headers={"Authorization": f"Bearer {self.secret_key}"},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Clerk user fetch failed for {external_id}: {e.response.status_code}")
            raise UpstreamError("clerk", f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise UpstreamError("clerk", str(e)) from e
        return profile_from_payload(data)

    def parse_webhook(self, raw_body: bytes, headers: Dict[str, str]) -> Dict[str, Any]:
        if not self.webhook_secret:
            raise UpstreamError("clerk", "webhook secret is not configured")
        if not signatures.verify_svix_signature(raw_body, headers, self.webhook_secret):
            logger.warning("Rejected identity webhook with invalid signature")
            raise SignatureMismatch("Invalid webhook signature")
        try:
            return json.loads(raw_body)
        except ValueError as e:
            raise ValidationFailed("Webhook body is not valid JSON") from e
