"""
Categories API Router.

Public reads, admin writes. Deleting a category removes its subcategories
and products.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth_middleware import get_current_admin
from storefront.database import get_db
from storefront.models import Admin
from storefront.routers.products import product_page
from storefront.routers.subcategories import SubcategoryResponse
from storefront.schemas import ok
from storefront.services.catalog import CatalogService

router = APIRouter()


class ImageRef(BaseModel):
    public_id: Optional[str] = None
    url: str


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    is_active: bool = True
    image: Optional[ImageRef] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None
    image: Optional[ImageRef] = None


class CategoryResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    is_active: bool
    image: Optional[dict] = None

    class Config:
        from_attributes = True


@router.get("")
async def list_categories(
    active: Optional[bool] = Query(None, description="Only active categories"),
    db: AsyncSession = Depends(get_db),
):
    categories = await CatalogService(db).list_categories(active_only=bool(active))
    return ok([CategoryResponse.model_validate(c) for c in categories], count=len(categories))


@router.get("/{category_id}")
async def get_category(category_id: str, db: AsyncSession = Depends(get_db)):
    return ok(CategoryResponse.model_validate(await CatalogService(db).get_category(category_id)))


@router.post("", status_code=201)
async def create_category(
    payload: CategoryCreate,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    category = await CatalogService(db).create_category(payload.model_dump())
    return ok(CategoryResponse.model_validate(category))


@router.put("/{category_id}")
async def update_category(
    category_id: str,
    payload: CategoryUpdate,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    category = await CatalogService(db).update_category(category_id, payload.model_dump(exclude_unset=True))
    return ok(CategoryResponse.model_validate(category))


@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    removed = await CatalogService(db).delete_category(category_id)
    return ok({"deleted": category_id, **removed})


@router.get("/{category_id}/subcategories")
async def list_category_subcategories(category_id: str, db: AsyncSession = Depends(get_db)):
    subcategories = await CatalogService(db).list_subcategories(category_id=category_id)
    return ok([SubcategoryResponse.model_validate(s) for s in subcategories], count=len(subcategories))


@router.get("/{category_id}/products")
async def list_category_products(category_id: str, request: Request, db: AsyncSession = Depends(get_db)):
    products, total, filters = await CatalogService(db).list_products(request.query_params, category_id=category_id)
    return product_page(products, total, filters)
