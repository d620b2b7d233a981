from decimal import Decimal
from typing import List

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from .errors import NotFoundError, ValidationFailedError
from .models import Order, OrderItem, Product, VendorProfile
from .schemas import AdminOrderOut, AdminVendorOut, EarningsOut, OverviewOut, VendorOrderItemOut

logger = structlog.get_logger(__name__)

MIN_COMMISSION_RATE = Decimal("0")
MAX_COMMISSION_RATE = Decimal("100")
CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


def _get_vendor(db: Session, vendor_id: str) -> VendorProfile:
    vendor = db.get(VendorProfile, vendor_id)
    if vendor is None:
        raise NotFoundError("Vendor not found")
    return vendor


# --- Vendors ---
def list_vendors(db: Session) -> List[AdminVendorOut]:
    vendors = (
        db.query(VendorProfile)
        .options(joinedload(VendorProfile.profile))
        .order_by(VendorProfile.created_at.desc())
        .all()
    )
    return [
        AdminVendorOut(
            id=v.id,
            user_id=v.user_id,
            store_name=v.store_name,
            store_description=v.store_description,
            commission_rate=v.commission_rate,
            status=v.status,
            total_sales=v.total_sales,
            email=v.profile.email if v.profile else None,
            full_name=v.profile.full_name if v.profile else None,
        )
        for v in vendors
    ]


def set_vendor_status(db: Session, vendor_id: str, status: str) -> VendorProfile:
    """Approve (active) or suspend a vendor."""
    vendor = _get_vendor(db, vendor_id)
    previous = vendor.status
    vendor.status = status
    db.commit()
    db.refresh(vendor)
    logger.info("vendor.status_changed", vendor_id=vendor_id, previous=previous, status=status)
    return vendor


def set_commission_rate(db: Session, vendor_id: str, rate: Decimal) -> VendorProfile:
    if not (MIN_COMMISSION_RATE <= rate <= MAX_COMMISSION_RATE):
        raise ValidationFailedError("Commission rate must be between 0 and 100", fields=["commission_rate"])
    vendor = _get_vendor(db, vendor_id)
    vendor.commission_rate = rate
    db.commit()
    db.refresh(vendor)
    logger.info("vendor.commission_changed", vendor_id=vendor_id, rate=str(rate))
    return vendor


# --- Orders ---
def list_orders(db: Session, limit: int = 100) -> List[AdminOrderOut]:
    orders = (
        db.query(Order)
        .options(joinedload(Order.buyer))
        .order_by(Order.created_at.desc())
        .limit(limit)
        .all()
    )
    return [
        AdminOrderOut(
            id=o.id,
            buyer_id=o.buyer_id,
            buyer_name=o.buyer.full_name if o.buyer else None,
            buyer_email=o.buyer.email if o.buyer else None,
            total_amount=o.total_amount,
            status=o.status,
            payment_method=o.payment_method,
            payment_status=o.payment_status,
            created_at=o.created_at,
        )
        for o in orders
    ]


def set_order_status(db: Session, order_id: str, status: str, publisher) -> Order:
    """Any status may follow any other; admins drive the lifecycle by hand."""
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    previous = order.status
    order.status = status
    db.commit()
    db.refresh(order)
    logger.info("order.status_changed", order_id=order_id, previous=previous, status=status)
    publisher.publish("order.status_changed", {"order_id": order_id, "previous": previous, "status": status})
    return order


# --- Products ---
def list_recent_products(db: Session, limit: int = 50) -> List[Product]:
    return (
        db.query(Product)
        .options(joinedload(Product.vendor))
        .order_by(Product.created_at.desc())
        .limit(limit)
        .all()
    )


# --- Dashboards ---
def overview(db: Session) -> OverviewOut:
    counts = dict(
        db.query(VendorProfile.status, func.count(VendorProfile.id))
        .group_by(VendorProfile.status)
        .all()
    )
    total_revenue = db.query(func.coalesce(func.sum(Order.total_amount), 0)).scalar()
    total_commission = db.query(func.coalesce(func.sum(OrderItem.commission_amount), 0)).scalar()
    return OverviewOut(
        total_vendors=sum(counts.values()),
        pending_vendors=counts.get("pending", 0),
        active_vendors=counts.get("active", 0),
        suspended_vendors=counts.get("suspended", 0),
        total_products=db.query(func.count(Product.id)).scalar(),
        total_orders=db.query(func.count(Order.id)).scalar(),
        total_revenue=_money(total_revenue),
        total_commission=_money(total_commission),
    )


def vendor_order_items(db: Session, vendor: VendorProfile) -> List[VendorOrderItemOut]:
    items = (
        db.query(OrderItem)
        .options(joinedload(OrderItem.product))
        .filter(OrderItem.vendor_id == vendor.id)
        .order_by(OrderItem.created_at.desc())
        .all()
    )
    return [
        VendorOrderItemOut(
            id=i.id,
            order_id=i.order_id,
            product_id=i.product_id,
            product_name=i.product.name if i.product else None,
            quantity=i.quantity,
            price=i.price,
            commission_amount=i.commission_amount,
            vendor_amount=i.vendor_amount,
            created_at=i.created_at,
        )
        for i in items
    ]


def vendor_earnings(db: Session, vendor: VendorProfile) -> EarningsOut:
    revenue, commissions, count = (
        db.query(
            func.coalesce(func.sum(OrderItem.vendor_amount), 0),
            func.coalesce(func.sum(OrderItem.commission_amount), 0),
            func.count(OrderItem.id),
        )
        .filter(OrderItem.vendor_id == vendor.id)
        .one()
    )
    return EarningsOut(
        total_revenue=_money(revenue),
        total_commissions=_money(commissions),
        total_orders=count,
    )
