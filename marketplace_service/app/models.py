import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base  # Import the Base class from our database setup

ROLES = ("buyer", "vendor", "admin")
VENDOR_STATUSES = ("pending", "active", "suspended")
PRODUCT_STATUSES = ("draft", "active", "out_of_stock")
ORDER_STATUSES = ("pending", "processing", "completed", "cancelled")
PAYMENT_METHODS = ("cod", "card")

# Money columns: two decimal places, stored exactly.
Money = Numeric(12, 2, asdecimal=True)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# A signed-up account. The role gates which parts of the API it may reach.
class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255))
    role = Column(String(16), nullable=False, default="buyer")  # buyer | vendor | admin
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    vendor_profile = relationship("VendorProfile", back_populates="profile", uselist=False)


# The seller side of a vendor Profile (one-to-one).
class VendorProfile(Base):
    __tablename__ = "vendor_profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), unique=True, nullable=False)
    store_name = Column(String(255), nullable=False)
    store_description = Column(Text)
    commission_rate = Column(Numeric(5, 2, asdecimal=True), default=Decimal("10"))  # percent
    status = Column(String(16), nullable=False, default="pending")  # pending | active | suspended
    total_sales = Column(Money, nullable=False, default=Decimal("0"))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    profile = relationship("Profile", back_populates="vendor_profile")
    products = relationship("Product", back_populates="vendor")


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_id)
    vendor_id = Column(String(36), ForeignKey("vendor_profiles.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Money, nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)  # never negative
    category = Column(String(120), nullable=False)
    image_url = Column(String(1024))
    status = Column(String(16), nullable=False, default="active")  # draft | active | out_of_stock
    meta_title = Column(String(255))
    meta_description = Column(String(255))
    meta_image_url = Column(String(1024))
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    vendor = relationship("VendorProfile", back_populates="products")


# One line of a buyer's cart. Removed on checkout or when quantity drops to 0.
class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    product = relationship("Product")


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    buyer_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    total_amount = Column(Money, nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    payment_method = Column(String(8), nullable=False, default="cod")  # cod | card
    payment_status = Column(String(8), nullable=False, default="unpaid")  # unpaid | paid
    shipping_name = Column(String(255), nullable=False)
    shipping_phone = Column(String(64), nullable=False)
    shipping_address = Column(String(512), nullable=False)
    shipping_city = Column(String(120), nullable=False)
    shipping_postal_code = Column(String(32), nullable=False)
    idempotency_key = Column(String(128), unique=True)  # Key to prevent duplicate checkouts.
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    buyer = relationship("Profile")
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.created_at")


# Price and commission are snapshotted at purchase time.
class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), index=True, nullable=False)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="SET NULL"))
    vendor_id = Column(String(36), ForeignKey("vendor_profiles.id"), index=True, nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Money, nullable=False)
    commission_amount = Column(Money, nullable=False)
    vendor_amount = Column(Money, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


# A signed-in session. Created on sign-in, revoked on sign-out.
class AuthSession(Base):
    __tablename__ = "auth_sessions"

    token = Column(String(128), primary_key=True)
    profile_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True))

    profile = relationship("Profile")
