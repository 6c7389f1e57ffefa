"""
Catalog Service - Category / Subcategory / Product CRUD.

Referential checks run inside the caller's transaction. Deletes cascade
explicitly: products, then subcategories, then the category.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import select, delete, update, func, or_, asc, desc
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import NotFound, ValidationFailed
from storefront.models import Category, Subcategory, Product
from storefront.models.base import new_id

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Product list filters
# ---------------------------------------------------------------------------

RANGE_FIELDS = {"price": Product.price, "stock": Product.stock}
RANGE_OPERATORS = {
    "gt": lambda col, v: col > v,
    "gte": lambda col, v: col >= v,
    "lt": lambda col, v: col < v,
    "lte": lambda col, v: col <= v,
}
SORT_FIELDS = {
    "price": Product.price,
    "name": Product.name,
    "stock": Product.stock,
    "created_at": Product.created_at,
    "createdAt": Product.created_at,
}
PLAIN_KEYS = {"page", "limit", "sort", "is_available", "category", "subcategory"}

_RANGE_KEY = re.compile(r"^(price|stock)\[(gt|gte|lt|lte)\]$")


@dataclass
class ProductQuery:
    """Validated product-list parameters."""
    conditions: List[Any] = field(default_factory=list)
    order_by: List[Any] = field(default_factory=list)
    page: int = 1
    limit: int = 10


def _parse_number(key: str, raw: str, integer: bool = False):
    try:
        return int(raw) if integer else Decimal(raw)
    except (ValueError, InvalidOperation):
        raise ValidationFailed(f"Filter '{key}' expects a number")


def _parse_bool(key: str, raw: str) -> bool:
    lowered = raw.lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValidationFailed(f"Filter '{key}' expects true or false")


def parse_product_filters(params: Mapping[str, str]) -> ProductQuery:
    """
    Build a ProductQuery from raw query parameters.

    Accepts price[gt|gte|lt|lte], stock[...], price, stock, is_available,
    category, subcategory, sort (comma separated, '-' for descending),
    page and limit. Any other key is rejected.
    """
    query = ProductQuery()

    for key, raw in params.items():
        match = _RANGE_KEY.match(key)
        if match:
            name, op = match.groups()
            value = _parse_number(key, raw, integer=(name == "stock"))
            query.conditions.append(RANGE_OPERATORS[op](RANGE_FIELDS[name], value))
        elif key in RANGE_FIELDS:
            query.conditions.append(RANGE_FIELDS[key] == _parse_number(key, raw, integer=(key == "stock")))
        elif key == "is_available":
            query.conditions.append(Product.is_available == _parse_bool(key, raw))
        elif key == "category":
            query.conditions.append(Product.category_id == raw)
        elif key == "subcategory":
            query.conditions.append(Product.subcategory_id == raw)
        elif key == "page":
            query.page = max(1, _parse_number(key, raw, integer=True))
        elif key == "limit":
            query.limit = min(100, max(1, _parse_number(key, raw, integer=True)))
        elif key == "sort":
            for token in filter(None, (t.strip() for t in raw.split(","))):
                descending = token.startswith("-")
                column = SORT_FIELDS.get(token.lstrip("-"))
                if column is None:
                    raise ValidationFailed(f"Cannot sort products by '{token.lstrip('-')}'")
                query.order_by.append(desc(column) if descending else asc(column))
        else:
            raise ValidationFailed(f"Unknown filter '{key}'")

    if not query.order_by:
        query.order_by.append(desc(Product.created_at))
    return query


class CatalogService:

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Categories ---

    async def list_categories(self, active_only: bool = False) -> List[Category]:
        query = select(Category).order_by(asc(Category.name))
        if active_only:
            query = query.where(Category.is_active == True)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_category(self, category_id: str) -> Category:
        category = await self.db.get(Category, category_id)
        if category is None:
            raise NotFound("Category not found")
        return category

    async def _ensure_category_name_free(self, name: str, exclude_id: Optional[str] = None) -> None:
        query = select(Category.id).where(Category.name == name)
        if exclude_id:
            query = query.where(Category.id != exclude_id)
        if (await self.db.execute(query)).first():
            raise ValidationFailed("Category with this name already exists")

    async def create_category(self, data: Dict[str, Any]) -> Category:
        await self._ensure_category_name_free(data["name"])
        category = Category(id=new_id(), **data)
        self.db.add(category)
        await self.db.flush()
        logger.info(f"Category created: {category.name}")
        return category

    async def update_category(self, category_id: str, changes: Dict[str, Any]) -> Category:
        category = await self.get_category(category_id)
        if "name" in changes:
            await self._ensure_category_name_free(changes["name"], exclude_id=category_id)
        for key, value in changes.items():
            setattr(category, key, value)
        await self.db.flush()
        return category

    async def delete_category(self, category_id: str) -> Dict[str, int]:
        category = await self.get_category(category_id)

        products = await self.db.execute(delete(Product).where(Product.category_id == category_id))
        subcategories = await self.db.execute(delete(Subcategory).where(Subcategory.category_id == category_id))
        await self.db.delete(category)
        await self.db.flush()

        logger.info(
            f"Category {category_id} deleted with {subcategories.rowcount} subcategories "
            f"and {products.rowcount} products"
        )
        return {"subcategories": subcategories.rowcount, "products": products.rowcount}

    # --- Subcategories ---

    async def _reload_subcategory(self, subcategory_id: str) -> Subcategory:
        result = await self.db.execute(
            select(Subcategory).where(Subcategory.id == subcategory_id).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def list_subcategories(self, category_id: Optional[str] = None) -> List[Subcategory]:
        query = select(Subcategory).order_by(asc(Subcategory.name))
        if category_id:
            await self.get_category(category_id)
            query = query.where(Subcategory.category_id == category_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_subcategory(self, subcategory_id: str) -> Subcategory:
        subcategory = await self.db.get(Subcategory, subcategory_id)
        if subcategory is None:
            raise NotFound("Subcategory not found")
        return subcategory

    async def _ensure_subcategory_name_free(self, name: str, category_id: str, exclude_id: Optional[str] = None):
        query = select(Subcategory.id).where(Subcategory.name == name, Subcategory.category_id == category_id)
        if exclude_id:
            query = query.where(Subcategory.id != exclude_id)
        if (await self.db.execute(query)).first():
            raise ValidationFailed("Subcategory with this name already exists in this category")

    async def create_subcategory(self, data: Dict[str, Any]) -> Subcategory:
        await self.get_category(data["category_id"])
        await self._ensure_subcategory_name_free(data["name"], data["category_id"])
        subcategory = Subcategory(id=new_id(), **data)
        self.db.add(subcategory)
        await self.db.flush()
        return await self._reload_subcategory(subcategory.id)

    async def update_subcategory(self, subcategory_id: str, changes: Dict[str, Any]) -> Subcategory:
        subcategory = await self.get_subcategory(subcategory_id)
        target_category = changes.get("category_id", subcategory.category_id)
        moved = target_category != subcategory.category_id

        if moved:
            await self.get_category(target_category)
        if "name" in changes or moved:
            await self._ensure_subcategory_name_free(
                changes.get("name", subcategory.name), target_category, exclude_id=subcategory_id
            )

        for key, value in changes.items():
            setattr(subcategory, key, value)
        await self.db.flush()

        if moved:
            # Products follow their subcategory to the new category
            await self.db.execute(
                update(Product)
                .where(Product.subcategory_id == subcategory_id)
                .values(category_id=target_category)
                .execution_options(synchronize_session="fetch")
            )
            logger.info(f"Subcategory {subcategory_id} moved to category {target_category}")

        return await self._reload_subcategory(subcategory_id)

    async def delete_subcategory(self, subcategory_id: str) -> Dict[str, int]:
        subcategory = await self.get_subcategory(subcategory_id)
        products = await self.db.execute(delete(Product).where(Product.subcategory_id == subcategory_id))
        await self.db.delete(subcategory)
        await self.db.flush()
        return {"products": products.rowcount}

    # --- Products ---

    async def _reload_product(self, product_id: str) -> Product:
        result = await self.db.execute(
            select(Product).where(Product.id == product_id).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _check_pairing(self, category_id: str, subcategory_id: str) -> None:
        """A product's category must be its subcategory's category."""
        await self.get_category(category_id)
        subcategory = await self.get_subcategory(subcategory_id)
        if subcategory.category_id != category_id:
            raise ValidationFailed("Subcategory does not belong to the selected category")

    async def _ensure_sku_free(self, sku: str, exclude_id: Optional[str] = None) -> None:
        query = select(Product.id).where(Product.sku == sku)
        if exclude_id:
            query = query.where(Product.id != exclude_id)
        if (await self.db.execute(query)).first():
            raise ValidationFailed("Product with this SKU already exists")

    async def list_products(
        self,
        params: Mapping[str, str],
        category_id: Optional[str] = None,
        subcategory_id: Optional[str] = None,
    ) -> Tuple[List[Product], int, ProductQuery]:
        filters = parse_product_filters(params)
        if category_id:
            await self.get_category(category_id)
            filters.conditions.append(Product.category_id == category_id)
        if subcategory_id:
            await self.get_subcategory(subcategory_id)
            filters.conditions.append(Product.subcategory_id == subcategory_id)

        total = (await self.db.execute(select(func.count(Product.id)).where(*filters.conditions))).scalar() or 0
        result = await self.db.execute(
            select(Product)
            .where(*filters.conditions)
            .order_by(*filters.order_by)
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        return list(result.scalars().all()), total, filters

    async def search_products(self, term: str, limit: int = 20) -> List[Product]:
        if not term or not term.strip():
            raise ValidationFailed("Search query is required")
        pattern = f"%{term.strip()}%"
        result = await self.db.execute(
            select(Product)
            .where(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
            .order_by(asc(Product.name))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_product(self, product_id: str) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        return product

    async def create_product(self, data: Dict[str, Any]) -> Product:
        await self._check_pairing(data["category_id"], data["subcategory_id"])
        await self._ensure_sku_free(data["sku"])

        product = Product(id=new_id(), **data)
        self.db.add(product)
        await self.db.flush()
        logger.info(f"Product created: {product.sku}")
        return await self._reload_product(product.id)

    async def update_product(self, product_id: str, changes: Dict[str, Any]) -> Product:
        product = await self.get_product(product_id)

        if "category_id" in changes or "subcategory_id" in changes:
            await self._check_pairing(
                changes.get("category_id", product.category_id),
                changes.get("subcategory_id", product.subcategory_id),
            )
        if "sku" in changes:
            await self._ensure_sku_free(changes["sku"], exclude_id=product_id)

        for key, value in changes.items():
            setattr(product, key, value)
        await self.db.flush()
        return await self._reload_product(product_id)

    async def delete_product(self, product_id: str) -> None:
        product = await self.get_product(product_id)
        await self.db.delete(product)
        await self.db.flush()
