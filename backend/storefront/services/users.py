"""
User Service - local mirror of identity-provider users.

Creates users on first sight, applies identity webhooks, and serves the
profile operations shoppers perform on their own record.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, delete, func, or_, asc, desc
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.adapters.base import IdentityProfile, IdentityProviderAdapter
from storefront.adapters.clerk import profile_from_payload
from storefront.exceptions import NotFound, ValidationFailed
from storefront.models import User, UserOrderEntry, Order, OrderItem, Payment, PaymentRefund
from storefront.models.base import new_id

logger = logging.getLogger(__name__)

USER_SORT_FIELDS = {
    "created_at": User.created_at,
    "email": User.email,
    "first_name": User.first_name,
    "last_name": User.last_name,
    "total_orders": User.total_orders,
    "total_spent": User.total_spent,
}

# Fields a shopper may change on their own record
EDITABLE_FIELDS = {
    "first_name", "last_name", "username", "phone_number",
    "preferences", "payment_preferences", "wishlist", "cart",
}


def page_window(page: Optional[int], limit: Optional[int], default_limit: int = 10) -> Tuple[int, int]:
    """Return (page, limit) with sane lower bounds."""
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else default_limit
    return page, min(limit, 100)


class UserService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_external_id(self, external_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.external_id == external_id))
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    # --- Identity sync ---

    async def upsert_from_profile(self, profile: IdentityProfile) -> User:
        user = await self.get_by_external_id(profile.external_id)
        if user is None:
            user = User(id=new_id(), external_id=profile.external_id)
            self.db.add(user)
            logger.info(f"Creating local user for identity {profile.external_id}")

        user.email = profile.email or f"{profile.external_id}@users.invalid"
        user.first_name = profile.first_name
        user.last_name = profile.last_name
        user.username = profile.username
        user.profile_image_url = profile.profile_image_url
        user.email_verified = profile.email_verified
        if profile.phone_number:
            user.phone_number = profile.phone_number
        user.metadata_json = dict(profile.metadata or {})

        await self.db.flush()
        return user

    async def ensure_user(self, external_id: str, identity: IdentityProviderAdapter) -> User:
        """Return the local user for an identity, fetching the profile on first sight."""
        user = await self.get_by_external_id(external_id)
        if user is not None:
            return user
        profile = await identity.fetch_user(external_id)
        return await self.upsert_from_profile(profile)

    async def sync_from_provider(self, external_id: str, identity: IdentityProviderAdapter) -> User:
        profile = await identity.fetch_user(external_id)
        return await self.upsert_from_profile(profile)

    async def handle_identity_event(self, event: Dict[str, Any]) -> str:
        """Apply one identity-provider webhook event. Returns a short outcome label."""
        event_type = event.get("type", "")
        data = event.get("data") or {}

        if event_type == "user.created":
            if await self.get_by_external_id(data.get("id", "")):
                logger.info(f"User {data.get('id')} already exists, ignoring user.created")
                return "exists"
            await self.upsert_from_profile(profile_from_payload(data))
            return "created"

        if event_type == "user.updated":
            await self.upsert_from_profile(profile_from_payload(data))
            return "updated"

        if event_type == "user.deleted":
            user = await self.get_by_external_id(data.get("id", ""))
            if user is None:
                return "missing"
            await self.delete_user(user)
            return "deleted"

        if event_type == "session.created":
            user = await self.get_by_external_id(data.get("user_id") or "")
            if user is None:
                return "missing"
            user.last_sign_in = datetime.utcnow()
            return "signed_in"

        logger.info(f"Unhandled identity webhook event: {event_type}")
        return "ignored"

    # --- Admin operations ---

    async def list_users(
        self,
        search: Optional[str] = None,
        sort_by: Optional[str] = None,
        order: str = "desc",
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[User], int, int, int]:
        page, limit = page_window(page, limit)

        query = select(User)
        count_query = select(func.count(User.id))
        if search:
            pattern = f"%{search}%"
            condition = or_(User.email.ilike(pattern), User.first_name.ilike(pattern), User.last_name.ilike(pattern))
            query = query.where(condition)
            count_query = count_query.where(condition)

        if sort_by and sort_by not in USER_SORT_FIELDS:
            raise ValidationFailed(f"Cannot sort users by '{sort_by}'")
        column = USER_SORT_FIELDS[sort_by or "created_at"]
        query = query.order_by(desc(column) if order == "desc" else asc(column))

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(query.offset((page - 1) * limit).limit(limit))
        return list(result.scalars().all()), total, page, limit

    async def delete_user(self, user: User) -> None:
        """Remove a user together with their orders, payments and history."""
        logger.info(f"Deleting user {user.id} ({user.external_id})")
        order_ids = select(Order.id).where(Order.user_id == user.id)
        payment_ids = select(Payment.id).where(Payment.user_id == user.id)

        await self.db.execute(delete(PaymentRefund).where(PaymentRefund.payment_id.in_(payment_ids)))
        await self.db.execute(delete(Payment).where(Payment.user_id == user.id))
        await self.db.execute(delete(OrderItem).where(OrderItem.order_id.in_(order_ids)))
        await self.db.execute(delete(Order).where(Order.user_id == user.id))
        await self.db.execute(delete(UserOrderEntry).where(UserOrderEntry.user_id == user.id))
        await self.db.execute(delete(User).where(User.id == user.id))

    # --- Self-service ---

    def update_details(self, user: User, changes: Dict[str, Any]) -> User:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationFailed(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        for field, value in changes.items():
            if field in ("preferences", "payment_preferences") and isinstance(value, dict):
                value = {**(getattr(user, field) or {}), **value}
            setattr(user, field, value)
        return user

    def upsert_address(self, user: User, address: Dict[str, Any]) -> List[dict]:
        if not (address.get("street") and address.get("city") and address.get("country")):
            raise ValidationFailed("Invalid address data")

        addresses = [dict(a) for a in (user.addresses or [])]
        address = dict(address)

        if address.get("is_default") or not addresses:
            for existing in addresses:
                existing["is_default"] = False
            address["is_default"] = True

        address_id = address.get("id")
        index = next((i for i, a in enumerate(addresses) if address_id and a.get("id") == address_id), None)
        if index is not None:
            addresses[index] = {**addresses[index], **address}
        else:
            address["id"] = address_id or new_id()
            addresses.append(address)

        user.addresses = addresses
        return addresses

    def merge_metadata(self, user: User, metadata: Dict[str, Any]) -> dict:
        if not isinstance(metadata, dict):
            raise ValidationFailed("Invalid metadata")
        user.metadata_json = {**(user.metadata_json or {}), **metadata}
        return user.metadata_json

    async def list_orders(
        self,
        user: User,
        status: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Order], int, int, int]:
        page, limit = page_window(page, limit)
        query = select(Order).where(Order.user_id == user.id)
        count_query = select(func.count(Order.id)).where(Order.user_id == user.id)
        if status:
            query = query.where(Order.status == status)
            count_query = count_query.where(Order.status == status)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(desc(Order.created_at)).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total, page, limit

    def list_reviews(self, user: User, order: str = "desc", page: Optional[int] = None, limit: Optional[int] = None):
        page, limit = page_window(page, limit)
        reviews = sorted(user.reviews or [], key=lambda r: r.get("created_at") or "", reverse=(order == "desc"))
        start = (page - 1) * limit
        return reviews[start:start + limit], len(reviews), page, limit
