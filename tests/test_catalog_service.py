"""
test_catalog_service.py — Tests for the product catalog

Covers: product creation and SKU uniqueness, list_products filters /
ordering / pagination, search_products (what agents see), external
sync upserts, low stock, atomic stock updates, category nesting and
parent cycle rejection.

Called by: pytest
Depends on: conftest fixtures, engage.services.catalog_service
"""

import pytest
from pydantic import ValidationError

from engage.errors import ConflictError, InvalidInputError, NotFoundError
from engage.models import Product, ProductCategory
from engage.schemas.catalog import CategoryInput, ProductInput, ProductListFilters
from engage.services.catalog_service import (
    create_category,
    create_product,
    get_product_by_sku,
    list_categories,
    list_products,
    low_stock_products,
    search_products,
    set_category_parent,
    update_stock,
    upsert_product,
)


def _product(db, org, sku, name, price=1000, stock=5, **kw):
    return create_product(org.id, ProductInput(sku=sku, name=name, price=price, stock_quantity=stock, **kw), db)


@pytest.fixture()
def shoes(db_session, test_org):
    return create_category(test_org.id, CategoryInput(name="Shoes"), db_session)


@pytest.fixture()
def catalog(db_session, test_org, shoes):
    return [
        _product(db_session, test_org, "RS-9", "Red Shoes", price=4999, stock=3, category_id=shoes.id),
        _product(db_session, test_org, "BS-1", "Blue Shirt", price=1999, stock=0,
                 description="Cotton shirt, pairs with red shoes"),
        _product(db_session, test_org, "GS-2", "Green Sandals", price=2999, stock=12, category_id=shoes.id),
        _product(db_session, test_org, "OLD-1", "Old Sneakers", price=500, stock=8, active=False),
    ]


# ── Products ─────────────────────────────────────────────────────────


class TestCreateProduct:
    def test_defaults(self, db_session, test_org):
        product = _product(db_session, test_org, " TS-1 ", "T-Shirt", currency="mxn")
        assert product.sku == "TS-1"
        assert product.currency == "MXN"
        assert product.track_inventory is True
        assert product.low_stock_threshold == 10
        assert product.tags == []

    def test_duplicate_sku_rejected(self, db_session, test_org, other_org):
        _product(db_session, test_org, "TS-1", "T-Shirt")
        with pytest.raises(ConflictError):
            _product(db_session, test_org, "TS-1", "Other")
        assert _product(db_session, other_org, "TS-1", "T-Shirt").organization_id == other_org.id

    def test_category_from_other_org_rejected(self, db_session, test_org, other_org):
        foreign = create_category(other_org.id, CategoryInput(name="Foreign"), db_session)
        with pytest.raises(NotFoundError):
            _product(db_session, test_org, "TS-1", "T-Shirt", category_id=foreign.id)

    def test_negative_price_invalid(self):
        with pytest.raises(ValidationError):
            ProductInput(sku="X", name="X", price=-1)

    def test_get_by_sku(self, db_session, test_org, catalog):
        assert get_product_by_sku(test_org.id, "GS-2", db_session).name == "Green Sandals"
        assert get_product_by_sku(test_org.id, "NOPE", db_session) is None


class TestListProducts:
    def test_default_newest_first(self, db_session, test_org, catalog):
        page = list_products(test_org.id, ProductListFilters(), db_session)
        assert [p.sku for p in page["products"]] == ["OLD-1", "GS-2", "BS-1", "RS-9"]
        assert page["total"] == 4
        assert page["has_more"] is False

    def test_search_matches_name_description_and_sku(self, db_session, test_org, catalog):
        page = list_products(test_org.id, ProductListFilters(search="red shoes"), db_session)
        assert {p.sku for p in page["products"]} == {"RS-9", "BS-1"}
        page = list_products(test_org.id, ProductListFilters(search="gs-2"), db_session)
        assert [p.sku for p in page["products"]] == ["GS-2"]

    def test_category_active_and_stock_filters(self, db_session, test_org, shoes, catalog):
        in_category = list_products(test_org.id, ProductListFilters(category_id=shoes.id), db_session)
        assert {p.sku for p in in_category["products"]} == {"RS-9", "GS-2"}

        active = list_products(test_org.id, ProductListFilters(active=True, in_stock=True), db_session)
        assert {p.sku for p in active["products"]} == {"RS-9", "GS-2"}

    def test_sort_by_price(self, db_session, test_org, catalog):
        page = list_products(
            test_org.id, ProductListFilters(order_by="price", order_direction="asc"), db_session
        )
        assert [p.price for p in page["products"]] == [500, 1999, 2999, 4999]

    def test_pagination(self, db_session, test_org, catalog):
        filters = ProductListFilters(order_by="name", order_direction="asc", limit=2, offset=1)
        page = list_products(test_org.id, filters, db_session)
        assert [p.name for p in page["products"]] == ["Green Sandals", "Old Sneakers"]
        assert page["total"] == 4
        assert page["has_more"] is True

    def test_page_size_bounds(self):
        with pytest.raises(ValidationError):
            ProductListFilters(limit=101)

    def test_scoped_to_organization(self, db_session, other_org, catalog):
        assert list_products(other_org.id, ProductListFilters(), db_session)["total"] == 0


class TestSearchProducts:
    def test_active_only_summaries(self, db_session, test_org, catalog):
        hits = search_products(test_org.id, "shoes", db_session)
        assert [h["sku"] for h in hits] == ["BS-1", "RS-9"]
        assert hits[1] == {
            "id": catalog[0].id, "sku": "RS-9", "name": "Red Shoes", "price": 4999,
            "currency": "USD", "stock_quantity": 3, "in_stock": True,
        }
        assert hits[0]["in_stock"] is False

    def test_untracked_inventory_counts_as_in_stock(self, db_session, test_org):
        _product(db_session, test_org, "SVC-1", "Installation service", stock=0, track_inventory=False)
        assert search_products(test_org.id, "installation", db_session)[0]["in_stock"] is True

    def test_blank_query(self, db_session, test_org, catalog):
        assert search_products(test_org.id, "   ", db_session) == []

    def test_limit(self, db_session, test_org, catalog):
        assert len(search_products(test_org.id, "s", db_session, limit=2)) == 2


class TestUpsertProduct:
    def test_created_then_updated(self, db_session, test_org):
        data = ProductInput(sku="SH-1", name="Shopify Hat", price=1500, external_id="gid://1",
                            external_source="shopify")
        product, action = upsert_product(test_org.id, data, db_session)
        assert action == "created"
        assert product.last_synced_at is not None

        again, action = upsert_product(
            test_org.id, data.model_copy(update={"price": 1200, "stock_quantity": 4}), db_session
        )
        assert action == "updated"
        assert again.id == product.id
        assert again.price == 1200
        assert db_session.query(Product).count() == 1

    def test_external_id_required(self, db_session, test_org):
        with pytest.raises(InvalidInputError):
            upsert_product(test_org.id, ProductInput(sku="X", name="X", price=1), db_session)


class TestStock:
    def test_low_stock(self, db_session, test_org, catalog):
        assert [p.sku for p in low_stock_products(test_org.id, db_session)] == ["BS-1", "RS-9", "OLD-1"]

    def test_set_add_subtract(self, db_session, catalog):
        product = catalog[0]
        assert update_stock(product.id, 10, db_session) == 10
        assert update_stock(product.id, 5, db_session, "add") == 15
        assert update_stock(product.id, 4, db_session, "subtract") == 11
        db_session.refresh(product)
        assert product.stock_quantity == 11

    def test_subtract_below_zero_rejected(self, db_session, catalog):
        with pytest.raises(ConflictError):
            update_stock(catalog[0].id, 4, db_session, "subtract")
        db_session.refresh(catalog[0])
        assert catalog[0].stock_quantity == 3

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            update_stock(999, 1, db_session, "subtract")

    def test_bad_operation(self, db_session, catalog):
        with pytest.raises(InvalidInputError):
            update_stock(catalog[0].id, 1, db_session, "multiply")


# ── Categories ───────────────────────────────────────────────────────


class TestCategories:
    def test_nested_create_and_list(self, db_session, test_org, shoes):
        running = create_category(test_org.id, CategoryInput(name="Running", parent_id=shoes.id), db_session)
        assert running.parent_id == shoes.id
        assert [c.name for c in list_categories(test_org.id, db_session)] == ["Running", "Shoes"]

    def test_parent_must_exist_in_org(self, db_session, test_org, other_org, shoes):
        with pytest.raises(NotFoundError):
            create_category(other_org.id, CategoryInput(name="X", parent_id=shoes.id), db_session)

    def test_self_parent_rejected(self, db_session, shoes):
        with pytest.raises(ConflictError):
            set_category_parent(shoes.id, shoes.id, db_session)

    def test_cycle_rejected(self, db_session, test_org, shoes):
        running = create_category(test_org.id, CategoryInput(name="Running", parent_id=shoes.id), db_session)
        trail = create_category(test_org.id, CategoryInput(name="Trail", parent_id=running.id), db_session)

        with pytest.raises(ConflictError, match="cycle"):
            set_category_parent(shoes.id, trail.id, db_session)

        db_session.refresh(shoes)
        assert shoes.parent_id is None

    def test_move_and_detach(self, db_session, test_org, shoes):
        apparel = create_category(test_org.id, CategoryInput(name="Apparel"), db_session)
        assert set_category_parent(shoes.id, apparel.id, db_session).parent_id == apparel.id
        assert set_category_parent(shoes.id, None, db_session).parent_id is None

    def test_unknown_category(self, db_session):
        with pytest.raises(NotFoundError):
            set_category_parent(999, None, db_session)

    def test_table_is_self_referencing(self):
        fks = {fk.target_fullname for fk in ProductCategory.__table__.c.parent_id.foreign_keys}
        assert fks == {"product_categories.id"}
