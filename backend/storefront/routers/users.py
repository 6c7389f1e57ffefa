"""
Users API Router.

Shoppers authenticate with the identity provider; their local record is
created on first sight and kept in sync by the provider's webhooks.
"""

import math
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.adapters.base import IdentityProviderAdapter
from storefront.adapters.registry import get_identity_provider
from storefront.auth_middleware import get_current_admin, get_current_user
from storefront.database import get_db
from storefront.exceptions import NotFound
from storefront.models import Admin, User
from storefront.schemas import OrderResponse, UserResponse, ok
from storefront.services.users import UserService

router = APIRouter()


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    username: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=32)
    preferences: Optional[dict] = None
    payment_preferences: Optional[dict] = None
    wishlist: Optional[List[str]] = None
    cart: Optional[list] = None


class AddressIn(BaseModel):
    id: Optional[str] = None
    type: Optional[str] = "shipping"
    street: str
    city: str
    state: Optional[str] = None
    country: str
    zip_code: Optional[str] = None
    is_default: bool = False


def _paged(items, total: int, page: int, limit: int, **extra) -> dict:
    return ok(
        items,
        count=len(items),
        total=total,
        pagination={
            "current_page": page,
            "total_pages": math.ceil(total / limit) if limit else 0,
            "limit": limit,
        },
        **extra,
    )


@router.get("")
async def list_users(
    search: Optional[str] = Query(None),
    sort_by: Optional[str] = Query(None),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    users, total, page, limit = await UserService(db).list_users(search, sort_by, order, page, limit)
    return _paged([UserResponse.model_validate(u) for u in users], total, page, limit)


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)):
    return ok(UserResponse.model_validate(user))


@router.patch("/me")
async def update_me(
    payload: UserUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    UserService(db).update_details(user, payload.model_dump(exclude_unset=True))
    await db.flush()
    return ok(UserResponse.model_validate(user), message="Profile updated")


@router.post("/me/addresses")
async def add_address(
    payload: AddressIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    addresses = UserService(db).upsert_address(user, payload.model_dump())
    await db.flush()
    return ok(addresses, message="Address saved")


@router.get("/me/orders")
async def my_order_history(
    status: Optional[str] = Query(None),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    orders, total, page, limit = await UserService(db).list_orders(user, status, page, limit)
    return _paged([OrderResponse.model_validate(o) for o in orders], total, page, limit)


@router.get("/me/reviews")
async def my_reviews(
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    reviews, total, page, limit = UserService(db).list_reviews(user, order, page, limit)
    return _paged(reviews, total, page, limit)


@router.patch("/me/metadata")
async def update_metadata(
    metadata: dict,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    merged = UserService(db).merge_metadata(user, metadata)
    await db.flush()
    return ok(merged)


@router.post("/webhook")
async def identity_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    identity: IdentityProviderAdapter = Depends(get_identity_provider),
):
    """Identity-provider events, verified with the Svix signature headers."""
    raw_body = await request.body()
    event = identity.parse_webhook(raw_body, dict(request.headers))
    outcome = await UserService(db).handle_identity_event(event)
    return ok(message=f"Webhook processed: {outcome}")


@router.get("/external/{external_id}")
async def get_by_external_id(
    external_id: str,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await UserService(db).get_by_external_id(external_id)
    if user is None:
        raise NotFound("User not found")
    return ok(UserResponse.model_validate(user))


@router.post("/sync/{external_id}")
async def sync_user(
    external_id: str,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProviderAdapter = Depends(get_identity_provider),
):
    user = await UserService(db).sync_from_provider(external_id, identity)
    return ok(UserResponse.model_validate(user), message="User synced")


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete by local id or identity-provider id."""
    service = UserService(db)
    user = await db.get(User, user_id) or await service.get_by_external_id(user_id)
    if user is None:
        raise NotFound("User not found")
    await service.delete_user(user)
    return ok({"deleted": user_id})
