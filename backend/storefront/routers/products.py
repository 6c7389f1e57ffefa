"""
Products API Router.

Listing accepts a fixed filter vocabulary:
    ?price[gte]=100&stock[gt]=0&is_available=true&sort=-price,name&page=2&limit=20
Unknown query keys are rejected with 400.
"""

import math
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.auth_middleware import get_current_admin
from storefront.database import get_db
from storefront.models import Admin
from storefront.schemas import ok
from storefront.services.catalog import CatalogService, ProductQuery

router = APIRouter()


class ProductImage(BaseModel):
    public_id: Optional[str] = None
    url: str


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    images: List[ProductImage] = []
    category_id: str
    subcategory_id: str
    stock: int = Field(0, ge=0)
    is_available: bool = True
    sku: str = Field(..., min_length=1, max_length=64)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    images: Optional[List[ProductImage]] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    is_available: Optional[bool] = None
    sku: Optional[str] = Field(None, min_length=1, max_length=64)


class NamedRef(BaseModel):
    id: str
    name: str

    class Config:
        from_attributes = True


class ProductResponse(BaseModel):
    id: str
    name: str
    description: str
    price: float
    images: list = []
    category_id: str
    subcategory_id: str
    category: Optional[NamedRef] = None
    subcategory: Optional[NamedRef] = None
    stock: int
    is_available: bool
    sku: str

    class Config:
        from_attributes = True


def product_page(products, total: int, filters: ProductQuery) -> dict:
    return ok(
        [ProductResponse.model_validate(p) for p in products],
        count=len(products),
        total=total,
        pagination={
            "current_page": filters.page,
            "total_pages": math.ceil(total / filters.limit) if filters.limit else 0,
            "limit": filters.limit,
        },
    )


def _product_fields(payload: BaseModel, partial: bool = False) -> dict:
    data = payload.model_dump(exclude_unset=partial)
    if data.get("images") is not None:
        data["images"] = [dict(image) for image in data["images"]]
    return data


@router.get("")
async def list_products(request: Request, db: AsyncSession = Depends(get_db)):
    products, total, filters = await CatalogService(db).list_products(request.query_params)
    return product_page(products, total, filters)


@router.get("/search")
async def search_products(
    q: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    products = await CatalogService(db).search_products(q, limit=limit)
    return ok([ProductResponse.model_validate(p) for p in products], count=len(products))


@router.get("/{product_id}")
async def get_product(product_id: str, db: AsyncSession = Depends(get_db)):
    return ok(ProductResponse.model_validate(await CatalogService(db).get_product(product_id)))


@router.post("", status_code=201)
async def create_product(
    payload: ProductCreate,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    product = await CatalogService(db).create_product(_product_fields(payload))
    return ok(ProductResponse.model_validate(product))


@router.put("/{product_id}")
async def update_product(
    product_id: str,
    payload: ProductUpdate,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    product = await CatalogService(db).update_product(product_id, _product_fields(payload, partial=True))
    return ok(ProductResponse.model_validate(product))


@router.delete("/{product_id}")
async def delete_product(
    product_id: str,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    await CatalogService(db).delete_product(product_id)
    return ok({"deleted": product_id})
