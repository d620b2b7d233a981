"""
Checkout: turns a buyer's cart into an order.

The whole conversion runs in one database transaction. The order row, its
line items, the stock decrements, vendor sales totals and the cart clear are
committed together or not at all. Stock is decremented with a conditional
UPDATE so two buyers racing for the last unit cannot both win.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from . import cart
from .config import DEFAULT_COMMISSION_RATE
from .errors import (
    ConflictError,
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
    ValidationFailedError,
)
from .models import CartItem, Order, OrderItem, Product, Profile, VendorProfile
from .schemas import CheckoutRequest, OrderItemOut, OrderOut

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
SHIPPING_FIELDS = (
    "shipping_name",
    "shipping_phone",
    "shipping_address",
    "shipping_city",
    "shipping_postal_code",
)


def commission_rate_for(vendor: Optional[VendorProfile]) -> Decimal:
    if vendor is None or vendor.commission_rate is None:
        return DEFAULT_COMMISSION_RATE
    return Decimal(vendor.commission_rate)


def split_line(line_total: Decimal, rate: Decimal) -> Tuple[Decimal, Decimal]:
    """Return (commission_amount, vendor_amount); the two always add up to line_total."""
    commission = (line_total * rate / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    return commission, line_total - commission


def missing_shipping_fields(request: CheckoutRequest) -> List[str]:
    return [name for name in SHIPPING_FIELDS if not (getattr(request, name) or "").strip()]


def confirmation_path(order_id: str) -> str:
    return f"/order/{order_id}/confirmation"


def _find_by_key(db: Session, buyer: Profile, key: str) -> Optional[Order]:
    order = db.query(Order).filter(Order.idempotency_key == key).first()
    if order is not None and order.buyer_id != buyer.id:
        raise ConflictError("Idempotency key already used")
    return order


def place_order(db: Session, buyer: Profile, request: CheckoutRequest, publisher) -> Tuple[Order, bool]:
    """
    Place an order from the buyer's cart.

    Returns ``(order, replayed)``. ``replayed`` is True when the idempotency
    key matched an order this buyer already placed; nothing is written then.
    """
    key = (request.idempotency_key or "").strip() or None

    # 1. Idempotency Check: Ensure this request hasn't been processed before.
    if key:
        existing = _find_by_key(db, buyer, key)
        if existing:
            logger.info("checkout.replayed", order_id=existing.id, buyer_id=buyer.id)
            return existing, True

    lines = cart.list_lines(db, buyer.id)
    if not lines:
        raise EmptyCartError()

    missing = missing_shipping_fields(request)
    if missing:
        raise ValidationFailedError("Please fill in shipping details to place your order.", fields=missing)

    for line in lines:
        if line.product.status != "active":
            raise ValidationFailedError(
                f"{line.product.name} is no longer available", fields=[line.product_id]
            )

    total_amount = sum((line.product.price * line.quantity for line in lines), Decimal("0"))

    try:
        # 2. Create the order.
        order = Order(
            buyer_id=buyer.id,
            total_amount=total_amount,
            status="pending",
            payment_method=request.payment_method,
            # Card payments have no gateway behind them yet.
            payment_status="unpaid" if request.payment_method == "cod" else "paid",
            shipping_name=request.shipping_name.strip(),
            shipping_phone=request.shipping_phone.strip(),
            shipping_address=request.shipping_address.strip(),
            shipping_city=request.shipping_city.strip(),
            shipping_postal_code=request.shipping_postal_code.strip(),
            idempotency_key=key,
        )
        db.add(order)
        db.flush()

        # 3. One snapshotted line item and one stock decrement per cart line.
        for line in lines:
            product = line.product
            line_total = product.price * line.quantity
            commission, vendor_amount = split_line(line_total, commission_rate_for(product.vendor))
            db.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                vendor_id=product.vendor_id,
                quantity=line.quantity,
                price=product.price,
                commission_amount=commission,
                vendor_amount=vendor_amount,
            ))

            available = product.stock_quantity
            result = db.execute(
                update(Product)
                .where(Product.id == product.id, Product.stock_quantity >= line.quantity)
                .values(stock_quantity=Product.stock_quantity - line.quantity)
            )
            if result.rowcount != 1:
                raise InsufficientStockError(product.id, line.quantity, available)

            db.execute(
                update(VendorProfile)
                .where(VendorProfile.id == product.vendor_id)
                .values(total_sales=VendorProfile.total_sales + line_total)
            )

        # 4. Clear the cart.
        db.query(CartItem).filter(CartItem.user_id == buyer.id).delete(synchronize_session=False)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        # A concurrent request with the same key won the race.
        if key:
            existing = _find_by_key(db, buyer, key)
            if existing:
                return existing, True
        raise ConflictError("Order could not be recorded") from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "checkout.completed",
        order_id=order.id,
        buyer_id=buyer.id,
        total=str(order.total_amount),
        lines=len(lines),
        payment_method=order.payment_method,
    )
    publisher.publish("order.placed", {
        "order_id": order.id,
        "buyer_id": buyer.id,
        "total_amount": str(order.total_amount),
        "items": [
            {"product_id": i.product_id, "vendor_id": i.vendor_id, "quantity": i.quantity}
            for i in order.items
        ],
    })
    return order, False


def _load_order(db: Session, order_id: str) -> Optional[Order]:
    return (
        db.query(Order)
        .options(joinedload(Order.items).joinedload(OrderItem.product))
        .filter(Order.id == order_id)
        .first()
    )


def get_order_for(db: Session, viewer: Profile, order_id: str) -> Order:
    """The buyer who placed the order, or an admin, may view it."""
    order = _load_order(db, order_id)
    if order is None or (order.buyer_id != viewer.id and viewer.role != "admin"):
        raise NotFoundError("Order not found")
    return order


def list_buyer_orders(db: Session, buyer: Profile) -> List[Order]:
    return (
        db.query(Order)
        .options(joinedload(Order.items).joinedload(OrderItem.product))
        .filter(Order.buyer_id == buyer.id)
        .order_by(Order.created_at.desc())
        .all()
    )


def order_out(order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        buyer_id=order.buyer_id,
        total_amount=order.total_amount,
        status=order.status,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        shipping_name=order.shipping_name,
        shipping_phone=order.shipping_phone,
        shipping_address=order.shipping_address,
        shipping_city=order.shipping_city,
        shipping_postal_code=order.shipping_postal_code,
        created_at=order.created_at,
        items=[
            OrderItemOut(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product.name if item.product else None,
                vendor_id=item.vendor_id,
                quantity=item.quantity,
                price=item.price,
                commission_amount=item.commission_amount,
                vendor_amount=item.vendor_amount,
            )
            for item in order.items
        ],
    )
