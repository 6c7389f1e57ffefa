"""
Back-office Router - admin accounts and dashboard.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth_middleware import get_current_admin, require_superadmin
from storefront.database import get_db
from storefront.models import Admin
from storefront.schemas import AdminResponse, ok
from storefront.services.admins import AdminService

router = APIRouter()


class AdminStatusRequest(BaseModel):
    is_active: bool


@router.get("/admins")
async def list_admins(
    superadmin: Admin = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    admins = await AdminService(db).list_admins()
    return ok([AdminResponse.model_validate(a) for a in admins])


@router.put("/admins/{admin_id}/status")
async def update_admin_status(
    admin_id: str,
    payload: AdminStatusRequest,
    superadmin: Admin = Depends(require_superadmin),
    db: AsyncSession = Depends(get_db),
):
    admin = await AdminService(db).set_active(superadmin, admin_id, payload.is_active)
    return ok(AdminResponse.model_validate(admin))


@router.get("/dashboard")
async def dashboard(
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return ok(await AdminService(db).dashboard(admin))
