"""
Admin model - back-office accounts with password login.
"""

from datetime import datetime
from typing import Optional

import bcrypt
from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base, UUIDMixin, TimestampMixin


class Admin(Base, UUIDMixin, TimestampMixin):
    """Back-office account. Role is 'admin' or 'superadmin'."""
    __tablename__ = "admins"

    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="admin")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime)
    reset_password_token: Mapped[Optional[str]] = mapped_column(String(64))
    reset_password_expires: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def set_password(self, password: str) -> None:
        self.password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")

    def check_password(self, candidate: str) -> bool:
        if not self.password_hash:
            return False
        return bcrypt.checkpw(candidate.encode("utf-8"), self.password_hash.encode("utf-8"))
