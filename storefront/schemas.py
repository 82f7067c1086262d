from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import DB_INT_MAX, OrderStatus, UserRole


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---- Catalog ----
class CategoryOut(CamelModel):
    id: int
    name: str
    slug: str


class ProductOut(CamelModel):
    id: int
    name: str
    slug: str
    description: str
    price_cents: int
    image_url: Optional[str] = None
    stock: int
    category_id: int
    created_at: datetime
    category: Optional[CategoryOut] = None


class ProductPageOut(CamelModel):
    items: List[ProductOut]
    page: int
    limit: int
    total: int
    page_count: int


class CategoryListOut(CamelModel):
    items: List[CategoryOut]


# ---- Checkout ----
class CartItemIn(CamelModel):
    product_id: int = Field(ge=1, le=DB_INT_MAX)
    quantity: int = Field(le=DB_INT_MAX)


class CheckoutIn(CamelModel):
    email: Optional[str] = None
    items: List[CartItemIn] = Field(default_factory=list)


class CheckoutOut(CamelModel):
    ok: bool = True
    order_id: int
    total_cents: int


# ---- Orders ----
class ProductSummaryOut(CamelModel):
    id: int
    name: str
    slug: str
    image_url: Optional[str] = None


class OrderItemOut(CamelModel):
    id: int
    product_id: int
    quantity: int
    price_cents: int
    product: Optional[ProductSummaryOut] = None


class OrderOut(CamelModel):
    id: int
    user_email: Optional[str] = None
    user_id: Optional[int] = None
    total_cents: int
    status: OrderStatus
    created_at: datetime
    items: List[OrderItemOut]


class OrderListOut(CamelModel):
    items: List[OrderOut]


# ---- Auth ----
class CredentialsIn(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserOut(CamelModel):
    id: int
    email: str
    role: UserRole


class UserEnvelope(CamelModel):
    user: Optional[UserOut] = None


class OkOut(CamelModel):
    ok: bool = True


# ---- Admin ----
class ProductCreateIn(CamelModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    price_cents: Optional[int] = Field(default=None, ge=0, le=DB_INT_MAX)
    image_url: Optional[str] = None
    stock: Optional[int] = Field(default=None, ge=0, le=DB_INT_MAX)
    category_slug: Optional[str] = None


class ProductPatchIn(CamelModel):
    """Partial update: only fields present in the body are applied."""

    name: Optional[str] = Field(default=None, min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    price_cents: Optional[int] = Field(default=None, ge=0, le=DB_INT_MAX)
    image_url: Optional[str] = None
    stock: Optional[int] = Field(default=None, ge=0, le=DB_INT_MAX)
    category_slug: Optional[str] = None


class CategoryCreateIn(CamelModel):
    name: Optional[str] = None
    slug: Optional[str] = None


class OrderStatusIn(CamelModel):
    status: Optional[str] = None


class ProductEnvelope(CamelModel):
    item: ProductOut


class CategoryEnvelope(CamelModel):
    item: CategoryOut


class OrderEnvelope(CamelModel):
    item: OrderOut


class AdminProductListOut(CamelModel):
    items: List[ProductOut]
