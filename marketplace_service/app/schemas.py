"""
Request and response models for the marketplace API.

Response models are built from ORM rows (``from_attributes``); money fields are
``Decimal`` and serialize as strings with two decimal places.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# --- Auth ---
class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = None
    role: Literal["buyer", "vendor"] = "buyer"


class SigninRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: Optional[str] = None
    role: str


class SessionResponse(BaseModel):
    token: str
    expires_at: datetime
    profile: ProfileOut


# --- Vendors ---
class VendorProfileCreate(BaseModel):
    store_name: str = Field(..., min_length=1)
    store_description: Optional[str] = None


class VendorProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    store_name: str
    store_description: Optional[str] = None
    commission_rate: Optional[Decimal] = None
    status: str
    total_sales: Decimal


class AdminVendorOut(VendorProfileOut):
    email: Optional[str] = None
    full_name: Optional[str] = None


class VendorStatusUpdate(BaseModel):
    status: Literal["active", "suspended"]


class CommissionUpdate(BaseModel):
    commission_rate: Decimal = Field(..., decimal_places=2)


# --- Products ---
class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, decimal_places=2, description="Unit price")
    stock_quantity: int = Field(0, ge=0)
    category: str = Field(..., min_length=1)
    image_url: Optional[str] = None
    status: Literal["draft", "active", "out_of_stock"] = "active"
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_image_url: Optional[str] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    stock_quantity: Optional[int] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    image_url: Optional[str] = None
    status: Optional[Literal["draft", "active", "out_of_stock"]] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_image_url: Optional[str] = None


class ProductOut(BaseModel):
    id: str
    vendor_id: str
    store_name: Optional[str] = None
    name: str
    slug: str
    description: Optional[str] = None
    price: Decimal
    stock_quantity: int
    category: str
    image_url: Optional[str] = None
    status: str
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_image_url: Optional[str] = None
    created_at: Optional[datetime] = None


# --- Cart ---
class CartAddRequest(BaseModel):
    product_id: str


class CartQuantityRequest(BaseModel):
    quantity: int


class CartLineOut(BaseModel):
    id: str
    product_id: str
    quantity: int
    line_total: Decimal
    product: ProductOut


class CartOut(BaseModel):
    items: List[CartLineOut]
    total: Decimal


# --- Orders ---
class CheckoutRequest(BaseModel):
    payment_method: Literal["cod", "card"] = "cod"
    shipping_name: str = ""
    shipping_phone: str = ""
    shipping_address: str = ""
    shipping_city: str = ""
    shipping_postal_code: str = ""
    idempotency_key: Optional[str] = Field(None, max_length=128)


class OrderItemOut(BaseModel):
    id: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    vendor_id: str
    quantity: int
    price: Decimal
    commission_amount: Decimal
    vendor_amount: Decimal


class OrderOut(BaseModel):
    id: str
    buyer_id: str
    total_amount: Decimal
    status: str
    payment_method: str
    payment_status: str
    shipping_name: str
    shipping_phone: str
    shipping_address: str
    shipping_city: str
    shipping_postal_code: str
    created_at: Optional[datetime] = None
    items: List[OrderItemOut] = Field(default_factory=list)


class CheckoutResponse(BaseModel):
    order: OrderOut
    confirmation_path: str
    replayed: bool = False


class OrderStatusUpdate(BaseModel):
    status: Literal["pending", "processing", "completed", "cancelled"]


class AdminOrderOut(BaseModel):
    id: str
    buyer_id: str
    buyer_name: Optional[str] = None
    buyer_email: Optional[str] = None
    total_amount: Decimal
    status: str
    payment_method: str
    payment_status: str
    created_at: Optional[datetime] = None


# --- Dashboards ---
class VendorOrderItemOut(BaseModel):
    id: str
    order_id: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int
    price: Decimal
    commission_amount: Decimal
    vendor_amount: Decimal
    created_at: Optional[datetime] = None


class EarningsOut(BaseModel):
    total_revenue: Decimal
    total_commissions: Decimal
    total_orders: int


class OverviewOut(BaseModel):
    total_vendors: int
    pending_vendors: int
    active_vendors: int
    suspended_vendors: int
    total_products: int
    total_orders: int
    total_revenue: Decimal
    total_commission: Decimal
