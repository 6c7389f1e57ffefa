"""
Tests for the authentication dependencies.

Verifies admin token creation and validation, and shopper resolution
through the identity provider.
"""

import pytest
from datetime import timedelta
from unittest.mock import MagicMock, patch

from fastapi import HTTPException
from jose import jwt

from storefront.models import Admin, User
from storefront.models.base import new_id

# Constants matching the middleware
ALGORITHM = "HS256"
TEST_SECRET = "test-secret-key-for-testing-only"


@pytest.fixture
def mock_secret():
    """Mock the secret key for all tests."""
    with patch('storefront.auth_middleware._get_secret_key', return_value=TEST_SECRET):
        yield TEST_SECRET


def request_with(cookies=None):
    request = MagicMock()
    request.cookies = cookies or {}
    return request


@pytest.fixture
def make_admin(db):
    async def _make(role="admin", is_active=True):
        admin = Admin(
            id=new_id(),
            username=f"admin-{new_id()[:6]}",
            email=f"{new_id()[:6]}@shop.example.com",
            role=role,
            is_active=is_active,
        )
        admin.set_password("correct horse")
        db.add(admin)
        await db.flush()
        return admin
    return _make


class TestCreateAdminToken:
    """Tests for create_admin_token."""

    def test_creates_valid_token(self, mock_secret):
        """Token should be decodable and carry id and role."""
        from storefront.auth_middleware import create_admin_token

        token = create_admin_token("admin-123", "superadmin")

        payload = jwt.decode(token, TEST_SECRET, algorithms=[ALGORITHM])

        assert payload["id"] == "admin-123"
        assert payload["role"] == "superadmin"
        assert "exp" in payload

    def test_custom_expiration(self, mock_secret):
        """Expired tokens no longer decode."""
        from storefront.auth_middleware import create_admin_token, decode_admin_token

        token = create_admin_token("admin-456", "admin", expires_delta=timedelta(minutes=-5))

        assert decode_admin_token(token) is None

    def test_token_with_wrong_secret_is_rejected(self, mock_secret):
        from storefront.auth_middleware import decode_admin_token

        token = jwt.encode({"id": "admin-abc", "role": "admin"}, "wrong-secret-key", algorithm=ALGORITHM)

        assert decode_admin_token(token) is None

    def test_token_without_id_is_rejected(self, mock_secret):
        from storefront.auth_middleware import decode_admin_token

        token = jwt.encode({"role": "admin"}, TEST_SECRET, algorithm=ALGORITHM)

        assert decode_admin_token(token) is None


class TestGetCurrentAdmin:
    """Tests for get_current_admin dependency."""

    @pytest.mark.asyncio
    async def test_bearer_token_returns_admin(self, mock_secret, db, make_admin):
        from storefront.auth_middleware import create_admin_token, get_current_admin

        admin = await make_admin()
        token = create_admin_token(admin.id, admin.role)

        result = await get_current_admin(request_with(), f"Bearer {token}", db)

        assert result.id == admin.id

    @pytest.mark.asyncio
    async def test_cookie_token_returns_admin(self, mock_secret, db, make_admin):
        from storefront.auth_middleware import create_admin_token, get_current_admin

        admin = await make_admin()
        token = create_admin_token(admin.id, admin.role)

        result = await get_current_admin(request_with({"admin_token": token}), None, db)

        assert result.id == admin.id

    @pytest.mark.asyncio
    async def test_missing_token_raises_401(self, mock_secret, db):
        from storefront.auth_middleware import get_current_admin

        with pytest.raises(HTTPException) as exc_info:
            await get_current_admin(request_with(), None, db)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_bearer_prefix_raises_401(self, mock_secret, db, make_admin):
        from storefront.auth_middleware import create_admin_token, get_current_admin

        admin = await make_admin()
        token = create_admin_token(admin.id, admin.role)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_admin(request_with(), token, db)  # No "Bearer " prefix

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_inactive_admin_raises_403(self, mock_secret, db, make_admin):
        from storefront.auth_middleware import create_admin_token, get_current_admin

        admin = await make_admin(is_active=False)
        token = create_admin_token(admin.id, admin.role)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_admin(request_with(), f"Bearer {token}", db)

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_superadmin_required(self, mock_secret, make_admin):
        from storefront.auth_middleware import require_superadmin

        admin = await make_admin(role="admin")

        with pytest.raises(HTTPException) as exc_info:
            await require_superadmin(admin)

        assert exc_info.value.status_code == 403


class TestShopperResolution:
    """Tests for get_current_user and get_caller."""

    @pytest.mark.asyncio
    async def test_first_request_creates_local_user(self, mock_secret, db, identity):
        from storefront.auth_middleware import get_current_user

        user = await get_current_user("Bearer token-user_42", db, identity)

        assert isinstance(user, User)
        assert user.external_id == "user_42"

    @pytest.mark.asyncio
    async def test_invalid_session_raises_401(self, mock_secret, db, identity):
        from storefront.auth_middleware import get_current_user

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user("Bearer not-a-session", db, identity)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_caller_prefers_admin_token(self, mock_secret, db, identity, make_admin):
        from storefront.auth_middleware import create_admin_token, get_caller

        admin = await make_admin()
        token = create_admin_token(admin.id, admin.role)

        caller = await get_caller(request_with(), f"Bearer {token}", db, identity)

        assert caller.is_admin
        assert caller.admin.id == admin.id

    @pytest.mark.asyncio
    async def test_caller_falls_back_to_shopper(self, mock_secret, db, identity):
        from storefront.auth_middleware import get_caller

        caller = await get_caller(request_with(), "Bearer token-user_7", db, identity)

        assert not caller.is_admin
        assert caller.user.external_id == "user_7"
