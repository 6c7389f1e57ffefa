"""
Tests for back-office accounts: login, registration, password reset.
"""

from datetime import datetime, timedelta

import pytest

from storefront.exceptions import AuthenticationFailed, PermissionDenied, ValidationFailed
from storefront.services.admins import AdminService, hash_reset_token


@pytest.fixture
def admins(db):
    return AdminService(db)


class TestLogin:

    @pytest.mark.asyncio
    async def test_valid_credentials(self, admins):
        await admins.register("ops", "Ops@Shop.example.com", "s3cret!")

        admin = await admins.authenticate("ops@shop.example.com", "s3cret!")

        assert admin.username == "ops"
        assert admin.last_login is not None

    @pytest.mark.asyncio
    async def test_wrong_password(self, admins):
        await admins.register("ops", "ops@shop.example.com", "s3cret!")

        with pytest.raises(AuthenticationFailed):
            await admins.authenticate("ops@shop.example.com", "guess")

    @pytest.mark.asyncio
    async def test_inactive_account(self, admins):
        admin = await admins.register("ops", "ops@shop.example.com", "s3cret!")
        admin.is_active = False

        with pytest.raises(PermissionDenied):
            await admins.authenticate("ops@shop.example.com", "s3cret!")


class TestRegistration:

    @pytest.mark.asyncio
    async def test_duplicate_username_or_email(self, admins):
        await admins.register("ops", "ops@shop.example.com", "s3cret!")

        with pytest.raises(ValidationFailed):
            await admins.register("ops", "other@shop.example.com", "s3cret!")
        with pytest.raises(ValidationFailed):
            await admins.register("ops2", "ops@shop.example.com", "s3cret!")

    @pytest.mark.asyncio
    async def test_unknown_role(self, admins):
        with pytest.raises(ValidationFailed):
            await admins.register("ops", "ops@shop.example.com", "s3cret!", role="owner")

    @pytest.mark.asyncio
    async def test_cannot_deactivate_self(self, admins):
        admin = await admins.register("root", "root@shop.example.com", "s3cret!", role="superadmin")

        with pytest.raises(ValidationFailed):
            await admins.set_active(admin, admin.id, False)


class TestPasswordReset:

    @pytest.mark.asyncio
    async def test_unknown_email_returns_none(self, admins):
        assert await admins.start_password_reset("ghost@shop.example.com") is None

    @pytest.mark.asyncio
    async def test_only_hash_is_stored(self, admins):
        await admins.register("ops", "ops@shop.example.com", "s3cret!")

        admin, token = await admins.start_password_reset("ops@shop.example.com")

        assert admin.reset_password_token == hash_reset_token(token)
        assert admin.reset_password_token != token

    @pytest.mark.asyncio
    async def test_reset_consumes_token(self, admins):
        await admins.register("ops", "ops@shop.example.com", "s3cret!")
        _, token = await admins.start_password_reset("ops@shop.example.com")

        admin = await admins.reset_password(token, "n3w-pass")

        assert admin.check_password("n3w-pass")
        assert admin.reset_password_token is None
        with pytest.raises(ValidationFailed):
            await admins.reset_password(token, "again!")

    @pytest.mark.asyncio
    async def test_expired_token(self, admins):
        await admins.register("ops", "ops@shop.example.com", "s3cret!")
        admin, token = await admins.start_password_reset("ops@shop.example.com")
        admin.reset_password_expires = datetime.utcnow() - timedelta(minutes=1)

        with pytest.raises(ValidationFailed):
            await admins.reset_password(token, "n3w-pass")
