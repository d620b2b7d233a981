from typing import Iterable, Optional


class MarketplaceError(Exception):
    """Base class for errors that are reported back to the API caller."""

    status_code = 400
    error = "bad_request"

    def __init__(self, detail: str, **extra):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"error": self.error, "detail": self.detail}
        body.update(self.extra)
        return body


class NotFoundError(MarketplaceError):
    status_code = 404
    error = "not_found"


class AuthenticationError(MarketplaceError):
    status_code = 401
    error = "not_authenticated"


class PermissionDeniedError(MarketplaceError):
    status_code = 403
    error = "forbidden"


class ValidationFailedError(MarketplaceError):
    status_code = 422
    error = "validation_failed"

    def __init__(self, detail: str, fields: Optional[Iterable[str]] = None):
        super().__init__(detail, fields=list(fields or []))


class ConflictError(MarketplaceError):
    status_code = 409
    error = "conflict"


class EmptyCartError(MarketplaceError):
    status_code = 400
    error = "empty_cart"

    def __init__(self, detail: str = "Cart is empty"):
        super().__init__(detail)


class InsufficientStockError(MarketplaceError):
    status_code = 409
    error = "insufficient_stock"

    def __init__(self, product_id: str, requested: int, available: int):
        super().__init__(
            f"not enough stock for product {product_id}",
            product_id=product_id,
            requested=requested,
            available=available,
        )
