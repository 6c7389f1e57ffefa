"""
Authentication dependencies.

Two kinds of callers reach the API:
- Admins, holding an HS256 JWT we sign ourselves (cookie `admin_token` or
  `Authorization: Bearer`).
- Shoppers, holding a session token from the external identity provider.
  The first request from an unknown identity creates the local User.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Header, HTTPException, Depends, Request
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.adapters.base import IdentityProviderAdapter
from storefront.adapters.registry import get_identity_provider
from storefront.database import get_db
from storefront.exceptions import AuthenticationFailed
from storefront.models import Admin, User

logger = logging.getLogger(__name__)

# JWT Configuration
ALGORITHM = "HS256"
ADMIN_TOKEN_EXPIRE_MINUTES = 60 * 24  # 1 day
ADMIN_COOKIE = "admin_token"


def _get_secret_key() -> str:
    """Lazy-load the secret key to support testing."""
    from storefront.config import get_settings
    return get_settings().SECRET_KEY


def create_admin_token(admin_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT for an admin.

    Args:
        admin_id: The admin's id.
        role: "admin" or "superadmin".
        expires_delta: Optional custom expiration time.

    Returns:
        A signed JWT string.
    """
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ADMIN_TOKEN_EXPIRE_MINUTES)

    to_encode = {"id": admin_id, "role": role, "exp": expire}
    return jwt.encode(to_encode, _get_secret_key(), algorithm=ALGORITHM)


def decode_admin_token(token: str) -> Optional[dict]:
    """Return the claims of a valid admin token, or None."""
    try:
        payload = jwt.decode(token, _get_secret_key(), algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not payload.get("id"):
        return None
    return payload


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return None


def _credentials_exception(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


@dataclass
class Caller:
    """The authenticated principal of a request."""
    id: str
    role: str                       # "user", "admin" or "superadmin"
    user: Optional[User] = None
    admin: Optional[Admin] = None

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "superadmin")


async def _load_admin(db: AsyncSession, claims: dict) -> Admin:
    admin = await db.get(Admin, claims["id"])
    if admin is None:
        raise _credentials_exception("Admin not found")
    if not admin.is_active:
        raise HTTPException(status_code=403, detail="Admin account is inactive")
    return admin


async def get_current_admin(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db),
) -> Admin:
    """
    FastAPI dependency that validates an admin JWT.
    Supports both the 'admin_token' cookie and the 'Authorization: Bearer' header.
    """
    token = request.cookies.get(ADMIN_COOKIE) or _bearer(authorization)
    if not token:
        raise _credentials_exception("Not authorized, no token")

    claims = decode_admin_token(token)
    if claims is None:
        raise _credentials_exception("Not authorized, token failed")

    return await _load_admin(db, claims)


async def require_superadmin(admin: Admin = Depends(get_current_admin)) -> Admin:
    if admin.role != "superadmin":
        raise HTTPException(status_code=403, detail="Superadmin access required")
    return admin


async def _resolve_user(db: AsyncSession, identity: IdentityProviderAdapter, token: str) -> User:
    from storefront.services.users import UserService

    try:
        external_id = await identity.verify_session_token(token)
    except AuthenticationFailed as e:
        raise _credentials_exception(e.message)

    return await UserService(db).ensure_user(external_id, identity)


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProviderAdapter = Depends(get_identity_provider),
) -> User:
    """FastAPI dependency that resolves the identity-provider bearer token to a local User."""
    token = _bearer(authorization)
    if not token:
        raise _credentials_exception("Authentication required")
    return await _resolve_user(db, identity, token)


async def get_caller(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProviderAdapter = Depends(get_identity_provider),
) -> Caller:
    """
    Resolve either kind of caller. An admin token wins when present;
    otherwise the bearer token must be an identity-provider session.
    """
    bearer = _bearer(authorization)

    for token in (request.cookies.get(ADMIN_COOKIE), bearer):
        claims = decode_admin_token(token) if token else None
        if claims:
            admin = await _load_admin(db, claims)
            return Caller(id=admin.id, role=admin.role, admin=admin)

    if not bearer:
        raise _credentials_exception("Authentication required")

    user = await _resolve_user(db, identity, bearer)
    return Caller(id=user.id, role="user", user=user)
