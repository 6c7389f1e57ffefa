"""
Admin Authentication Router.

Password login for back-office accounts:
1. /login - verifies credentials, returns a JWT and sets the admin_token cookie
2. /forgot-password + /reset-password/{token} - emailed one-hour reset link
"""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth_middleware import (
    ADMIN_COOKIE, ADMIN_TOKEN_EXPIRE_MINUTES, create_admin_token, get_current_admin, require_superadmin,
)
from storefront.config import get_settings
from storefront.database import get_db
from storefront.models import Admin
from storefront.schemas import AdminResponse, ok
from storefront.services.admins import AdminService
from storefront.services.email import EmailService

router = APIRouter()

RESET_MESSAGE = "If that email exists in our system, a password reset link has been sent"


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    email: str
    password: str = Field(..., min_length=6)
    role: Optional[str] = "admin"


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=6)


@router.post("/login")
async def login(payload: LoginRequest, response: Response, db: AsyncSession = Depends(get_db)):
    admin = await AdminService(db).authenticate(payload.email, payload.password)
    token = create_admin_token(admin.id, admin.role, timedelta(minutes=ADMIN_TOKEN_EXPIRE_MINUTES))

    settings = get_settings()
    response.set_cookie(
        key=ADMIN_COOKIE,
        value=token,
        httponly=True,
        secure=not settings.DEBUG,
        samesite="lax" if settings.DEBUG else "none",
        max_age=ADMIN_TOKEN_EXPIRE_MINUTES * 60,
    )
    return ok({"token": token, "admin": AdminResponse.model_validate(admin)}, message="Login successful")


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(ADMIN_COOKIE)
    return ok(message="Logged out successfully")


@router.post("/register", status_code=201)
async def register(
    payload: RegisterRequest,
    superadmin: Admin = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    admin = await AdminService(db).register(payload.username, payload.email, payload.password, payload.role or "admin")
    return ok(AdminResponse.model_validate(admin), message="Admin created successfully")


@router.get("/verify")
async def verify(admin: Admin = Depends(get_current_admin)):
    return ok({"authenticated": True, "admin": AdminResponse.model_validate(admin)})


@router.put("/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    await AdminService(db).change_password(admin, payload.current_password, payload.new_password)
    return ok(message="Password updated successfully")


@router.post("/forgot-password")
async def forgot_password(
    payload: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    issued = await AdminService(db).start_password_reset(payload.email)
    if issued:
        admin, token = issued
        reset_url = f"{get_settings().FRONTEND_URL}/reset-password/{token}"
        background_tasks.add_task(EmailService().send_password_reset, admin.email, reset_url)
    # Same answer either way so the endpoint does not reveal which emails exist
    return ok(message=RESET_MESSAGE)


@router.post("/reset-password/{token}")
async def reset_password(token: str, payload: ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    await AdminService(db).reset_password(token, payload.password)
    return ok(message="Password reset successful")
