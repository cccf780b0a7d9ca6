"""Product Catalog — the inventory agents search when a contact asks about products.

Products and categories are organization-scoped. Categories nest through
parent_id; a parent assignment that would make a category its own
ancestor is rejected with ConflictError, so the tree never loops.

Stock changes go through update_stock, which adjusts the count in one
UPDATE statement so concurrent orders can't overwrite each other.

Usage:
    page = list_products(org_id, ProductListFilters(search="shoe", in_stock=True), db)
    hits = search_products(org_id, "red shoes", db)   # what search-product returns
    set_category_parent(category.id, parent.id, db)
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from engage.errors import ConflictError, InvalidInputError, NotFoundError
from engage.models import Product, ProductCategory
from engage.schemas.catalog import CategoryInput, ProductInput, ProductListFilters

log = logging.getLogger("engage.catalog")

SEARCH_LIMIT = 10

_SORTABLE = {
    "created_at": Product.created_at,
    "name": Product.name,
    "price": Product.price,
    "stock_quantity": Product.stock_quantity,
}


# ═══════════════════════════════════════════════════════════════════════
#  CATEGORIES
# ═══════════════════════════════════════════════════════════════════════


def _category_in_org(category_id: int, organization_id: int, db: Session) -> ProductCategory:
    category = db.get(ProductCategory, category_id)
    if category is None or category.organization_id != organization_id:
        raise NotFoundError("ProductCategory", category_id)
    return category


def create_category(organization_id: int, data: CategoryInput, db: Session) -> ProductCategory:
    if data.parent_id is not None:
        _category_in_org(data.parent_id, organization_id, db)
    category = ProductCategory(
        organization_id=organization_id,
        name=data.name.strip(),
        description=data.description,
        parent_id=data.parent_id,
    )
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def set_category_parent(category_id: int, parent_id: int | None, db: Session) -> ProductCategory:
    """Move a category under a new parent (or to the top level with None).

    Walks up from the proposed parent; meeting the category itself means
    the move would close a loop.
    """
    category = db.get(ProductCategory, category_id)
    if category is None:
        raise NotFoundError("ProductCategory", category_id)

    if parent_id is not None:
        if parent_id == category_id:
            raise ConflictError(f"Category {category_id} cannot be its own parent")
        ancestor = _category_in_org(parent_id, category.organization_id, db)
        seen = set()
        while ancestor is not None and ancestor.id not in seen:
            if ancestor.id == category_id:
                raise ConflictError(
                    f"Moving category {category_id} under {parent_id} would create a cycle"
                )
            seen.add(ancestor.id)
            ancestor = db.get(ProductCategory, ancestor.parent_id) if ancestor.parent_id else None

    category.parent_id = parent_id
    db.commit()
    return category


def list_categories(organization_id: int, db: Session) -> list[ProductCategory]:
    return (
        db.query(ProductCategory)
        .filter(ProductCategory.organization_id == organization_id)
        .order_by(ProductCategory.name, ProductCategory.id)
        .all()
    )


# ═══════════════════════════════════════════════════════════════════════
#  PRODUCTS
# ═══════════════════════════════════════════════════════════════════════


def get_product_by_sku(organization_id: int, sku: str, db: Session) -> Product | None:
    return (
        db.query(Product)
        .filter(Product.organization_id == organization_id, Product.sku == sku.strip())
        .first()
    )


def create_product(organization_id: int, data: ProductInput, db: Session) -> Product:
    if data.category_id is not None:
        _category_in_org(data.category_id, organization_id, db)
    if get_product_by_sku(organization_id, data.sku, db) is not None:
        raise ConflictError(f"SKU {data.sku} already exists in organization {organization_id}")
    product = Product(organization_id=organization_id, **data.model_dump())
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def upsert_product(organization_id: int, data: ProductInput, db: Session) -> tuple[Product, str]:
    """Create or refresh a product synced from an external store, keyed by external_id.

    Returns (product, "created" | "updated").
    """
    if not data.external_id:
        raise InvalidInputError("external_id is required to sync a product")
    if data.category_id is not None:
        _category_in_org(data.category_id, organization_id, db)

    now = datetime.now(timezone.utc)
    product = (
        db.query(Product)
        .filter(Product.organization_id == organization_id, Product.external_id == data.external_id)
        .first()
    )
    if product is None:
        product = Product(organization_id=organization_id, last_synced_at=now, **data.model_dump())
        db.add(product)
        action = "created"
    else:
        for key, value in data.model_dump().items():
            setattr(product, key, value)
        product.last_synced_at = now
        action = "updated"
    db.commit()
    db.refresh(product)
    log.info(f"Product {product.sku} {action} from {data.external_source or 'external source'}")
    return product, action


def list_products(organization_id: int, filters: ProductListFilters, db: Session) -> dict:
    """Filtered, sorted, paginated product listing.

    Returns {"products": [...], "total": int, "has_more": bool}.
    """
    q = db.query(Product).filter(Product.organization_id == organization_id)
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        q = q.filter(or_(
            Product.name.ilike(pattern),
            Product.description.ilike(pattern),
            Product.sku.ilike(pattern),
        ))
    if filters.category_id is not None:
        q = q.filter(Product.category_id == filters.category_id)
    if filters.active is not None:
        q = q.filter(Product.active.is_(filters.active))
    if filters.in_stock:
        q = q.filter(Product.stock_quantity > 0)

    total = q.with_entities(func.count(Product.id)).scalar() or 0

    column = _SORTABLE[filters.order_by]
    if filters.order_direction == "asc":
        q = q.order_by(column.asc(), Product.id.asc())
    else:
        q = q.order_by(column.desc(), Product.id.desc())
    products = q.offset(filters.offset).limit(filters.limit).all()
    return {
        "products": products,
        "total": total,
        "has_more": total > filters.offset + filters.limit,
    }


def product_summary(product: Product) -> dict:
    """The fields an agent needs to talk about a product."""
    return {
        "id": product.id,
        "sku": product.sku,
        "name": product.name,
        "price": product.price,
        "currency": product.currency,
        "stock_quantity": product.stock_quantity,
        "in_stock": product.in_stock,
    }


def search_products(organization_id: int, query: str, db: Session, limit: int = SEARCH_LIMIT) -> list[dict]:
    """Active products whose name, description or SKU contains the query, newest first."""
    query = (query or "").strip()
    if not query:
        return []
    pattern = f"%{query}%"
    products = (
        db.query(Product)
        .filter(
            Product.organization_id == organization_id,
            Product.active.is_(True),
            or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
                Product.sku.ilike(pattern),
            ),
        )
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
        .all()
    )
    return [product_summary(p) for p in products]


def low_stock_products(organization_id: int, db: Session) -> list[Product]:
    return (
        db.query(Product)
        .filter(
            Product.organization_id == organization_id,
            Product.track_inventory.is_(True),
            Product.stock_quantity <= Product.low_stock_threshold,
        )
        .order_by(Product.stock_quantity.asc(), Product.id)
        .all()
    )


def update_stock(product_id: int, quantity: int, db: Session, operation: str = "set") -> int:
    """Set, add to or subtract from a product's stock. Returns the new count.

    Subtracting more than is on hand raises ConflictError and changes nothing.
    """
    if quantity < 0:
        raise InvalidInputError("Stock quantity must not be negative")
    q = db.query(Product).filter(Product.id == product_id)
    if operation == "set":
        values = {Product.stock_quantity: quantity}
    elif operation == "add":
        values = {Product.stock_quantity: Product.stock_quantity + quantity}
    elif operation == "subtract":
        q = q.filter(Product.stock_quantity >= quantity)
        values = {Product.stock_quantity: Product.stock_quantity - quantity}
    else:
        raise InvalidInputError(f"Unknown stock operation: {operation}")

    updated = q.update(values, synchronize_session="fetch")
    if not updated:
        db.rollback()
        if db.get(Product, product_id) is None:
            raise NotFoundError("Product", product_id)
        raise ConflictError(f"Not enough stock on product {product_id} to subtract {quantity}")

    stock = db.query(Product.stock_quantity).filter(Product.id == product_id).scalar()
    db.commit()
    return stock
