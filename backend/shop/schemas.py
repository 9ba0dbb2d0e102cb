"""
Pydantic Schemas
================

Request and response shapes for the HTTP layer.

- *Create / *Update: validated request bodies
- Product, Order: response bodies (prices already converted for display)
"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# PRODUCT SCHEMAS
# ============================================================================

class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, examples=["Men Red Shirt"])
    category: str = Field(..., examples=["Men Shirts"])
    quantity: int = Field(..., ge=0, examples=[1000])
    price: Decimal = Field(..., ge=0, decimal_places=2, examples=["19.99"])


class ProductCreate(ProductBase):
    pass


class ProductUpdate(ProductBase):
    """Full replacement of a product row."""


class Product(ProductBase):
    model_config = ConfigDict(from_attributes=True)

    id: str


# ============================================================================
# ORDER SCHEMAS
# ============================================================================

class OrderLineRequest(BaseModel):
    id: str = Field(..., description="Product id", examples=["bc264186-9c2e-4533-6ba5-705c160303c1"])
    quantity: int = Field(..., gt=0, examples=[2])


class OrderCreate(BaseModel):
    name: str = Field(..., examples=["Ivan Ivanov"])
    address: str = Field(..., examples=["Sofia Mladost 2"])
    phone: str = Field(..., examples=["0888888888"])
    products: List[OrderLineRequest] = Field(..., min_length=1)


class OrderUpdate(BaseModel):
    """Replaces the order's scalar fields. Lines are never touched."""
    name: str
    address: str
    phone: str
    price: Decimal = Field(..., ge=0, decimal_places=2)
    status: Optional[str] = None


class OrderedProduct(BaseModel):
    """An order line joined with the product's current display data."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    category: str
    quantity: int
    price: Decimal


class Order(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    address: str
    phone: str
    products: List[OrderedProduct]
    price: Decimal
    status: str


class Created(BaseModel):
    id: str
