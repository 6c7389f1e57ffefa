"""
Tests for catalog CRUD, cross-references, cascades and product filters.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select, func

from storefront.exceptions import NotFound, ValidationFailed
from storefront.models import Category, Product, Subcategory
from storefront.services.catalog import CatalogService, parse_product_filters


@pytest.fixture
def catalog(db):
    return CatalogService(db)


async def seed_tree(catalog, name="Apparel", subcategories=("Shirts", "Trousers"), products_each=2):
    category = await catalog.create_category({"name": name, "description": f"{name} range"})
    subs = []
    for sub_name in subcategories:
        sub = await catalog.create_subcategory({"name": sub_name, "category_id": category.id})
        subs.append(sub)
        for index in range(products_each):
            await catalog.create_product({
                "name": f"{sub_name} {index}",
                "description": f"{sub_name} item {index}",
                "price": Decimal(100 * (index + 1)),
                "category_id": category.id,
                "subcategory_id": sub.id,
                "stock": index * 5,
                "sku": f"{name[:3]}-{sub_name[:3]}-{index}".upper(),
            })
    return category, subs


async def count(db, model) -> int:
    return (await db.execute(select(func.count(model.id)))).scalar()


class TestCategories:

    @pytest.mark.asyncio
    async def test_duplicate_name_is_rejected(self, catalog):
        await catalog.create_category({"name": "Footwear"})
        with pytest.raises(ValidationFailed):
            await catalog.create_category({"name": "Footwear"})

    @pytest.mark.asyncio
    async def test_delete_cascades_to_subcategories_and_products(self, db, catalog):
        category, _ = await seed_tree(catalog)
        other, _ = await seed_tree(catalog, name="Home", subcategories=("Lamps",), products_each=1)

        removed = await catalog.delete_category(category.id)

        assert removed == {"subcategories": 2, "products": 4}
        assert await count(db, Category) == 1
        assert await count(db, Subcategory) == 1
        assert await count(db, Product) == 1

    @pytest.mark.asyncio
    async def test_missing_category(self, catalog):
        with pytest.raises(NotFound):
            await catalog.get_category("nope")


class TestSubcategories:

    @pytest.mark.asyncio
    async def test_name_unique_within_category_only(self, catalog):
        first = await catalog.create_category({"name": "Men"})
        second = await catalog.create_category({"name": "Women"})
        await catalog.create_subcategory({"name": "Shoes", "category_id": first.id})
        await catalog.create_subcategory({"name": "Shoes", "category_id": second.id})

        with pytest.raises(ValidationFailed):
            await catalog.create_subcategory({"name": "Shoes", "category_id": first.id})

    @pytest.mark.asyncio
    async def test_requires_existing_category(self, catalog):
        with pytest.raises(NotFound):
            await catalog.create_subcategory({"name": "Orphans", "category_id": "missing"})

    @pytest.mark.asyncio
    async def test_delete_cascades_to_products(self, db, catalog):
        _, (shirts, trousers) = await seed_tree(catalog)

        removed = await catalog.delete_subcategory(shirts.id)

        assert removed == {"products": 2}
        remaining = (await db.execute(select(Product.subcategory_id))).scalars().all()
        assert set(remaining) == {trousers.id}

    @pytest.mark.asyncio
    async def test_moving_subcategory_moves_its_products(self, db, catalog):
        _, (shirts, _) = await seed_tree(catalog)
        target = await catalog.create_category({"name": "Sale"})

        moved = await catalog.update_subcategory(shirts.id, {"category_id": target.id})

        assert moved.category_id == target.id
        categories = (await db.execute(
            select(Product.category_id).where(Product.subcategory_id == shirts.id)
        )).scalars().all()
        assert set(categories) == {target.id}


class TestProducts:

    @pytest.mark.asyncio
    async def test_subcategory_must_belong_to_category(self, catalog):
        apparel, (shirts, _) = await seed_tree(catalog, products_each=0)
        home = await catalog.create_category({"name": "Home"})

        with pytest.raises(ValidationFailed):
            await catalog.create_product({
                "name": "Mismatched", "description": "x", "price": Decimal("10"),
                "category_id": home.id, "subcategory_id": shirts.id, "stock": 1, "sku": "MIS-1",
            })

    @pytest.mark.asyncio
    async def test_update_checks_pairing(self, catalog):
        _, (shirts, _) = await seed_tree(catalog, products_each=1)
        home, (lamps,) = await seed_tree(catalog, name="Home", subcategories=("Lamps",), products_each=0)
        product = (await catalog.list_products({"subcategory": shirts.id}))[0][0]

        with pytest.raises(ValidationFailed):
            await catalog.update_product(product.id, {"subcategory_id": lamps.id})

        updated = await catalog.update_product(product.id, {"category_id": home.id, "subcategory_id": lamps.id})
        assert updated.subcategory.name == "Lamps"
        assert updated.category.name == "Home"

    @pytest.mark.asyncio
    async def test_duplicate_sku(self, catalog):
        await seed_tree(catalog, subcategories=("Shirts",), products_each=1)
        _, (lamps,) = await seed_tree(catalog, name="Home", subcategories=("Lamps",), products_each=0)

        with pytest.raises(ValidationFailed):
            await catalog.create_product({
                "name": "Copy", "description": "x", "price": Decimal("1"),
                "category_id": lamps.category_id, "subcategory_id": lamps.id, "stock": 0, "sku": "APP-SHI-0",
            })

    @pytest.mark.asyncio
    async def test_filters_and_sorting(self, catalog):
        await seed_tree(catalog, products_each=3)

        products, total, filters = await catalog.list_products({
            "price[gte]": "200", "stock[gt]": "0", "sort": "-price,name",
        })

        assert total == 4
        assert [p.price for p in products] == [Decimal("300.00"), Decimal("300.00"), Decimal("200.00"), Decimal("200.00")]
        assert [p.name for p in products][:2] == ["Shirts 2", "Trousers 2"]

    @pytest.mark.asyncio
    async def test_pagination(self, catalog):
        await seed_tree(catalog, products_each=3)

        products, total, filters = await catalog.list_products({"limit": "4", "page": "2", "sort": "name"})

        assert total == 6
        assert filters.page == 2
        assert [p.name for p in products] == ["Trousers 1", "Trousers 2"]

    @pytest.mark.asyncio
    async def test_nested_listing(self, catalog):
        category, (shirts, _) = await seed_tree(catalog)
        await seed_tree(catalog, name="Home", subcategories=("Lamps",), products_each=5)

        by_category = await catalog.list_products({}, category_id=category.id)
        by_subcategory = await catalog.list_products({}, subcategory_id=shirts.id)

        assert by_category[1] == 4
        assert by_subcategory[1] == 2

    @pytest.mark.asyncio
    async def test_search_matches_name_and_description(self, catalog):
        await seed_tree(catalog, products_each=1)

        by_name = await catalog.search_products("trousers 0")
        by_description = await catalog.search_products("SHIRTS ITEM")

        assert [p.name for p in by_name] == ["Trousers 0"]
        assert [p.name for p in by_description] == ["Shirts 0"]


class TestFilterParsing:

    def test_unknown_key_is_rejected(self):
        with pytest.raises(ValidationFailed):
            parse_product_filters({"price[ne]": "5"})
        with pytest.raises(ValidationFailed):
            parse_product_filters({"$where": "1"})

    def test_non_numeric_range(self):
        with pytest.raises(ValidationFailed):
            parse_product_filters({"price[lt]": "cheap"})

    def test_unknown_sort_field(self):
        with pytest.raises(ValidationFailed):
            parse_product_filters({"sort": "-password"})

    def test_limit_is_capped(self):
        assert parse_product_filters({"limit": "1000"}).limit == 100

    def test_default_sort(self):
        filters = parse_product_filters({})
        assert len(filters.order_by) == 1
        assert filters.page == 1
