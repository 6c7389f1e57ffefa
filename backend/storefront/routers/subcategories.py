"""
Subcategories API Router.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth_middleware import get_current_admin
from storefront.database import get_db
from storefront.models import Admin
from storefront.routers.products import product_page
from storefront.schemas import ok
from storefront.services.catalog import CatalogService

router = APIRouter()


class SubcategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    category_id: str
    is_active: bool = True


class SubcategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    category_id: Optional[str] = None
    is_active: Optional[bool] = None


class CategoryRef(BaseModel):
    id: str
    name: str

    class Config:
        from_attributes = True


class SubcategoryResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    category_id: str
    category: Optional[CategoryRef] = None
    is_active: bool

    class Config:
        from_attributes = True


@router.get("")
async def list_subcategories(
    category: Optional[str] = Query(None, description="Filter by category id"),
    db: AsyncSession = Depends(get_db),
):
    subcategories = await CatalogService(db).list_subcategories(category_id=category)
    return ok([SubcategoryResponse.model_validate(s) for s in subcategories], count=len(subcategories))


@router.get("/{subcategory_id}")
async def get_subcategory(subcategory_id: str, db: AsyncSession = Depends(get_db)):
    return ok(SubcategoryResponse.model_validate(await CatalogService(db).get_subcategory(subcategory_id)))


@router.post("", status_code=201)
async def create_subcategory(
    payload: SubcategoryCreate,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    subcategory = await CatalogService(db).create_subcategory(payload.model_dump())
    return ok(SubcategoryResponse.model_validate(subcategory))


@router.put("/{subcategory_id}")
async def update_subcategory(
    subcategory_id: str,
    payload: SubcategoryUpdate,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    subcategory = await CatalogService(db).update_subcategory(subcategory_id, payload.model_dump(exclude_unset=True))
    return ok(SubcategoryResponse.model_validate(subcategory))


@router.delete("/{subcategory_id}")
async def delete_subcategory(
    subcategory_id: str,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    removed = await CatalogService(db).delete_subcategory(subcategory_id)
    return ok({"deleted": subcategory_id, **removed})


@router.get("/{subcategory_id}/products")
async def list_subcategory_products(subcategory_id: str, request: Request, db: AsyncSession = Depends(get_db)):
    products, total, filters = await CatalogService(db).list_products(request.query_params, subcategory_id=subcategory_id)
    return product_page(products, total, filters)
