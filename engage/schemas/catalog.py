"""
schemas/catalog.py — Product and category inputs, catalog list filters

Business Rules:
- SKU and name are required; SKU is unique per organization
- Prices are integers in minor currency units, never negative
- Currency is a 3-letter code, stored upper-case
- List pages hold 1-100 products; default order is newest first

Called by: services/catalog_service.py
Depends on: pydantic
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator


class ProductInput(BaseModel):
    sku: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    category_id: int | None = None
    tags: list[str] = Field(default_factory=list)
    price: int = Field(ge=0)
    compare_at_price: int | None = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    track_inventory: bool = True
    stock_quantity: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=10, ge=0)
    images: list[str] = Field(default_factory=list)
    active: bool = True
    external_id: str | None = None
    external_source: str | None = None

    @field_validator("sku", "name")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class CategoryInput(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    parent_id: int | None = None


class ProductListFilters(BaseModel):
    limit: int = Field(default=25, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
    search: str | None = None
    category_id: int | None = None
    active: bool | None = None
    in_stock: bool = False
    order_by: Literal["created_at", "name", "price", "stock_quantity"] = "created_at"
    order_direction: Literal["asc", "desc"] = "desc"
