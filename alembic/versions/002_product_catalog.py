"""Add product catalog tables

Revision ID: 002_product_catalog
Revises: 001_initial
Create Date: 2026-10-18

Adds product_categories (self-referencing parent_id) and products.
Databases built by 001 after the catalog models existed already have
both tables, so each create is skipped when the table is present.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002_product_catalog"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(name: str) -> bool:
    return sa.inspect(op.get_bind()).has_table(name)


def upgrade() -> None:
    if not _has_table("product_categories"):
        op.create_table(
            "product_categories",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("organization_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
            sa.Column("name", sa.String(100), nullable=False),
            sa.Column("description", sa.Text),
            sa.Column(
                "parent_id", sa.Integer, sa.ForeignKey("product_categories.id", ondelete="SET NULL")
            ),
            sa.Column("created_at", sa.DateTime),
            sa.Column("updated_at", sa.DateTime),
        )
        op.create_index("ix_product_categories_org", "product_categories", ["organization_id"])
        op.create_index("ix_product_categories_parent", "product_categories", ["parent_id"])

    if not _has_table("products"):
        op.create_table(
            "products",
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("organization_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
            sa.Column("sku", sa.String(100), nullable=False),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("description", sa.Text),
            sa.Column(
                "category_id", sa.Integer, sa.ForeignKey("product_categories.id", ondelete="SET NULL")
            ),
            sa.Column("tags", sa.JSON),
            sa.Column("price", sa.Integer, nullable=False),
            sa.Column("compare_at_price", sa.Integer),
            sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
            sa.Column("track_inventory", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("stock_quantity", sa.Integer, nullable=False, server_default="0"),
            sa.Column("low_stock_threshold", sa.Integer, nullable=False, server_default="10"),
            sa.Column("images", sa.JSON),
            sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("external_id", sa.String(255)),
            sa.Column("external_source", sa.String(50)),
            sa.Column("last_synced_at", sa.DateTime),
            sa.Column("created_at", sa.DateTime),
            sa.Column("updated_at", sa.DateTime),
        )
        op.create_index("ix_products_org_sku", "products", ["organization_id", "sku"], unique=True)
        op.create_index("ix_products_org_active", "products", ["organization_id", "active"])
        op.create_index("ix_products_category", "products", ["category_id"])
        op.create_index("ix_products_external", "products", ["external_id"])


def downgrade() -> None:
    op.drop_table("products")
    op.drop_table("product_categories")
