from decimal import Decimal
from typing import List

import structlog
from sqlalchemy.orm import Session, joinedload

from .catalog import product_out
from .errors import InsufficientStockError, NotFoundError, ValidationFailedError
from .models import CartItem, Product, Profile
from .schemas import CartLineOut, CartOut

logger = structlog.get_logger(__name__)


def list_lines(db: Session, user_id: str) -> List[CartItem]:
    """Cart lines in insertion order, with live product data."""
    return (
        db.query(CartItem)
        .options(joinedload(CartItem.product).joinedload(Product.vendor))
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.created_at, CartItem.id)
        .all()
    )


def cart_out(lines: List[CartItem]) -> CartOut:
    items = []
    total = Decimal("0")
    for line in lines:
        line_total = line.product.price * line.quantity
        total += line_total
        items.append(CartLineOut(
            id=line.id,
            product_id=line.product_id,
            quantity=line.quantity,
            line_total=line_total,
            product=product_out(line.product),
        ))
    return CartOut(items=items, total=total)


def add(db: Session, buyer: Profile, product_id: str) -> CartItem:
    """Add one unit: bump the existing line, or start a new one at quantity 1."""
    product = db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    if product.status != "active":
        raise ValidationFailedError("Product is not available for sale", fields=["product_id"])

    line = (
        db.query(CartItem)
        .filter(CartItem.user_id == buyer.id, CartItem.product_id == product_id)
        .first()
    )
    quantity = line.quantity + 1 if line else 1
    if quantity > product.stock_quantity:
        raise InsufficientStockError(product.id, quantity, product.stock_quantity)

    if line:
        line.quantity = quantity
    else:
        line = CartItem(user_id=buyer.id, product_id=product_id, quantity=1)
        db.add(line)
    db.commit()
    db.refresh(line)
    logger.info("cart.added", user_id=buyer.id, product_id=product_id, quantity=quantity)
    return line


def set_quantity(db: Session, buyer: Profile, item_id: str, quantity: int) -> None:
    """Overwrite a line's quantity; zero or less removes the line."""
    line = db.get(CartItem, item_id)
    if line is None or line.user_id != buyer.id:
        raise NotFoundError("Cart item not found")

    if quantity <= 0:
        db.delete(line)
        db.commit()
        logger.info("cart.removed", user_id=buyer.id, item_id=item_id)
        return

    if quantity > line.product.stock_quantity:
        raise InsufficientStockError(line.product_id, quantity, line.product.stock_quantity)
    line.quantity = quantity
    db.commit()
    logger.info("cart.updated", user_id=buyer.id, item_id=item_id, quantity=quantity)
