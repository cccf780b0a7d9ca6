"""Product catalog — items the agents can look up, and their categories."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow


class ProductCategory(Base):
    """Nested categories. parent_id never forms a cycle (checked in catalog_service)."""

    __tablename__ = "product_categories"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    parent_id = Column(Integer, ForeignKey("product_categories.id", ondelete="SET NULL"))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    parent = relationship("ProductCategory", remote_side=[id])

    __table_args__ = (
        Index("ix_product_categories_org", "organization_id"),
        Index("ix_product_categories_parent", "parent_id"),
    )


class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    sku = Column(String(100), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    category_id = Column(Integer, ForeignKey("product_categories.id", ondelete="SET NULL"))
    tags = Column(JSON, default=list)

    price = Column(Integer, nullable=False)  # minor currency units
    compare_at_price = Column(Integer)
    currency = Column(String(3), nullable=False, default="USD")

    track_inventory = Column(Boolean, nullable=False, default=True)
    stock_quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=10)

    images = Column(JSON, default=list)
    active = Column(Boolean, nullable=False, default=True)

    external_id = Column(String(255))
    external_source = Column(String(50))  # shopify, woocommerce, custom_api, csv
    last_synced_at = Column(UTCDateTime)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    category = relationship("ProductCategory")

    __table_args__ = (
        Index("ix_products_org_sku", "organization_id", "sku", unique=True),
        Index("ix_products_org_active", "organization_id", "active"),
        Index("ix_products_category", "category_id"),
        Index("ix_products_external", "external_id"),
    )

    @property
    def in_stock(self) -> bool:
        return not self.track_inventory or (self.stock_quantity or 0) > 0
