"""
Admin Service - back-office accounts.

Login, registration by a superadmin, password change and token-based
password reset, activation toggles and the dashboard counters.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import AuthenticationFailed, NotFound, PermissionDenied, ValidationFailed
from storefront.models import Admin, User, Order, Product, Payment, PaymentStatus
from storefront.models.base import new_id

logger = logging.getLogger(__name__)

RESET_TOKEN_TTL = timedelta(hours=1)
ADMIN_ROLES = ("admin", "superadmin")


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AdminService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _by_email(self, email: str) -> Optional[Admin]:
        result = await self.db.execute(select(Admin).where(Admin.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def authenticate(self, email: str, password: str) -> Admin:
        admin = await self._by_email(email)
        if admin is None or not admin.check_password(password):
            logger.warning(f"Failed admin login for {email}")
            raise AuthenticationFailed("Invalid credentials")
        if not admin.is_active:
            raise PermissionDenied("Account is disabled. Please contact system administrator")

        admin.last_login = datetime.utcnow()
        await self.db.flush()
        logger.info(f"Admin {admin.username} logged in")
        return admin

    async def register(self, username: str, email: str, password: str, role: str = "admin") -> Admin:
        if role not in ADMIN_ROLES:
            raise ValidationFailed(f"Unknown role '{role}'")
        email = email.strip().lower()

        existing = await self.db.execute(
            select(Admin.id).where(or_(Admin.email == email, Admin.username == username))
        )
        if existing.first():
            raise ValidationFailed("User with that email or username already exists")

        admin = Admin(id=new_id(), username=username, email=email, role=role, is_active=True)
        admin.set_password(password)
        self.db.add(admin)
        await self.db.flush()
        logger.info(f"Admin account created: {username} ({role})")
        return admin

    async def change_password(self, admin: Admin, current_password: str, new_password: str) -> None:
        if not admin.check_password(current_password):
            raise AuthenticationFailed("Current password is incorrect")
        admin.set_password(new_password)
        await self.db.flush()

    async def start_password_reset(self, email: str) -> Optional[Tuple[Admin, str]]:
        """
        Issue a reset token for the admin with this email.
        Returns (admin, raw token) or None when no such admin exists; only
        the token's SHA-256 is stored.
        """
        admin = await self._by_email(email)
        if admin is None:
            return None

        token = secrets.token_hex(32)
        admin.reset_password_token = hash_reset_token(token)
        admin.reset_password_expires = datetime.utcnow() + RESET_TOKEN_TTL
        await self.db.flush()
        return admin, token

    async def reset_password(self, token: str, new_password: str) -> Admin:
        result = await self.db.execute(
            select(Admin).where(
                Admin.reset_password_token == hash_reset_token(token),
                Admin.reset_password_expires > datetime.utcnow(),
            )
        )
        admin = result.scalar_one_or_none()
        if admin is None:
            raise ValidationFailed("Invalid or expired token")

        admin.set_password(new_password)
        admin.reset_password_token = None
        admin.reset_password_expires = None
        await self.db.flush()
        logger.info(f"Password reset completed for admin {admin.username}")
        return admin

    async def list_admins(self) -> List[Admin]:
        result = await self.db.execute(select(Admin).order_by(Admin.created_at))
        return list(result.scalars().all())

    async def set_active(self, actor: Admin, admin_id: str, is_active: bool) -> Admin:
        if admin_id == actor.id:
            raise ValidationFailed("You cannot modify your own account status")
        admin = await self.db.get(Admin, admin_id)
        if admin is None:
            raise NotFound("Admin not found")
        admin.is_active = is_active
        await self.db.flush()
        logger.info(f"Admin {admin.username} {'activated' if is_active else 'deactivated'} by {actor.username}")
        return admin

    async def dashboard(self, admin: Admin) -> Dict:
        async def count(model, *conditions) -> int:
            return (await self.db.execute(select(func.count(model.id)).where(*conditions))).scalar() or 0

        revenue = (await self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.status == PaymentStatus.COMPLETED.value)
        )).scalar()

        return {
            "total_admins": await count(Admin),
            "active_admins": await count(Admin, Admin.is_active == True),
            "total_users": await count(User),
            "total_orders": await count(Order),
            "total_products": await count(Product),
            "revenue": float(Decimal(str(revenue or 0))),
            "last_login": admin.last_login,
        }
