import re
from typing import List, Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.orm import Session

from .config import DEFAULT_COMMISSION_RATE
from .errors import ConflictError, NotFoundError, PermissionDeniedError
from .models import CartItem, OrderItem, Product, Profile, VendorProfile
from .schemas import ProductCreate, ProductOut, ProductUpdate

logger = structlog.get_logger(__name__)

META_DESCRIPTION_LENGTH = 155
# Columns an update may not null out.
REQUIRED_PRODUCT_FIELDS = ("name", "price", "stock_quantity", "category", "status")


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def product_out(product: Product) -> ProductOut:
    return ProductOut(
        id=product.id,
        vendor_id=product.vendor_id,
        store_name=product.vendor.store_name if product.vendor else None,
        name=product.name,
        slug=slugify(product.name),
        description=product.description,
        price=product.price,
        stock_quantity=product.stock_quantity,
        category=product.category,
        image_url=product.image_url,
        status=product.status,
        meta_title=product.meta_title,
        meta_description=product.meta_description,
        meta_image_url=product.meta_image_url,
        created_at=product.created_at,
    )


# --- Vendor store setup ---
def create_vendor_profile(db: Session, profile: Profile, store_name: str,
                          store_description: Optional[str]) -> VendorProfile:
    if profile.vendor_profile is not None:
        raise ConflictError("Vendor profile already exists")
    vendor = VendorProfile(
        user_id=profile.id,
        store_name=store_name,
        store_description=store_description,
        commission_rate=DEFAULT_COMMISSION_RATE,
        status="pending",
    )
    db.add(vendor)
    db.commit()
    db.refresh(vendor)
    logger.info("vendor.created", vendor_id=vendor.id, profile_id=profile.id)
    return vendor


def require_vendor_profile(vendor: Optional[VendorProfile]) -> VendorProfile:
    if vendor is None:
        raise NotFoundError("Set up your store first")
    return vendor


# --- Vendor product management ---
def _with_meta_defaults(values: dict, vendor: VendorProfile) -> dict:
    """Fill blank SEO fields from the product's own data."""
    name = values.get("name") or ""
    description = re.sub(r"\s+", " ", values.get("description") or "").strip()
    if not (values.get("meta_title") or "").strip():
        values["meta_title"] = f"{name} | {vendor.store_name}"
    if not (values.get("meta_description") or "").strip():
        values["meta_description"] = description[:META_DESCRIPTION_LENGTH]
    if not (values.get("meta_image_url") or "").strip():
        values["meta_image_url"] = values.get("image_url") or ""
    return values


def create_product(db: Session, vendor: VendorProfile, payload: ProductCreate) -> Product:
    values = _with_meta_defaults(payload.model_dump(), vendor)
    product = Product(vendor_id=vendor.id, **values)
    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info("product.created", product_id=product.id, vendor_id=vendor.id)
    return product


def get_owned_product(db: Session, vendor: VendorProfile, product_id: str) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if product.vendor_id != vendor.id:
        raise PermissionDeniedError("Product belongs to another vendor")
    return product


def update_product(db: Session, vendor: VendorProfile, product_id: str,
                   payload: ProductUpdate) -> Product:
    product = get_owned_product(db, vendor, product_id)
    changes = payload.model_dump(exclude_unset=True)
    for field in REQUIRED_PRODUCT_FIELDS:
        if field in changes and changes[field] is None:
            del changes[field]
    merged = {
        "name": changes.get("name", product.name),
        "description": changes.get("description", product.description),
        "image_url": changes.get("image_url", product.image_url),
        "meta_title": changes.get("meta_title", product.meta_title),
        "meta_description": changes.get("meta_description", product.meta_description),
        "meta_image_url": changes.get("meta_image_url", product.meta_image_url),
    }
    changes.update(_with_meta_defaults(merged, vendor))
    for field, value in changes.items():
        setattr(product, field, value)
    db.commit()
    db.refresh(product)
    logger.info("product.updated", product_id=product.id, fields=sorted(payload.model_fields_set))
    return product


def delete_product(db: Session, vendor: VendorProfile, product_id: str) -> None:
    product = get_owned_product(db, vendor, product_id)
    try:
        db.query(CartItem).filter(CartItem.product_id == product.id).delete(synchronize_session=False)
        # Order history keeps its snapshot; only the link to the product goes.
        db.query(OrderItem).filter(OrderItem.product_id == product.id).update(
            {OrderItem.product_id: None}, synchronize_session=False
        )
        db.delete(product)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("product.deleted", product_id=product_id, vendor_id=vendor.id)


def list_vendor_products(db: Session, vendor: VendorProfile) -> List[Product]:
    return (
        db.query(Product)
        .filter(Product.vendor_id == vendor.id)
        .order_by(Product.created_at.desc())
        .all()
    )


# --- Marketplace ---
def list_marketplace(db: Session, search: Optional[str] = None,
                     category: Optional[str] = None) -> List[Product]:
    query = db.query(Product).filter(Product.status == "active")
    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
    if category:
        query = query.filter(Product.category == category)
    return query.order_by(Product.created_at.desc()).all()


def list_categories(db: Session) -> List[str]:
    rows = (
        db.query(Product.category)
        .filter(Product.status == "active")
        .distinct()
        .order_by(Product.category)
        .all()
    )
    return [row[0] for row in rows]


def get_product(db: Session, product_id: str) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product
