from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import auth, cart, catalog, checkout, moderation
from .auth import CurrentSession, get_current_session, require_role
from .config import ADMIN_EMAIL, ADMIN_PASSWORD, CORS_ORIGINS
from .database import Base, SessionLocal, engine, get_db
from .errors import MarketplaceError
from .logging_config import configure_logging
from .messaging.producer import get_event_publisher
from .schemas import (
    AdminOrderOut,
    AdminVendorOut,
    CartAddRequest,
    CartOut,
    CartQuantityRequest,
    CheckoutRequest,
    CheckoutResponse,
    CommissionUpdate,
    EarningsOut,
    OrderOut,
    OrderStatusUpdate,
    OverviewOut,
    ProductCreate,
    ProductOut,
    ProductUpdate,
    ProfileOut,
    SessionResponse,
    SigninRequest,
    SignupRequest,
    VendorOrderItemOut,
    VendorProfileCreate,
    VendorProfileOut,
    VendorStatusUpdate,
)

configure_logging()
logger = structlog.get_logger(__name__)

# Create database tables on startup if they don't exist.
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if ADMIN_EMAIL and ADMIN_PASSWORD:
        db = SessionLocal()
        try:
            auth.seed_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD)
        finally:
            db.close()
    logger.info("service.started")
    yield


app = FastAPI(title="Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

vendor_only = require_role("vendor", "admin")
admin_only = require_role("admin")


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("request.failed", path=request.url.path, error=exc.error)
    else:
        logger.info("request.rejected", path=request.url.path, error=exc.error, status=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
def root():
    """Health check endpoint."""
    return {"message": "Backend API is running"}


@app.get("/api/hello")
def hello():
    return {"message": "Hello from backend API"}


# --- Auth ---
@app.post("/api/v1/auth/signup", response_model=ProfileOut, status_code=201)
def signup(payload: SignupRequest, db: Session = Depends(get_db)):
    return auth.signup(db, payload.email, payload.password, payload.full_name, payload.role)


@app.post("/api/v1/auth/signin", response_model=SessionResponse)
def signin(payload: SigninRequest, db: Session = Depends(get_db)):
    session = auth.signin(db, payload.email, payload.password)
    return SessionResponse(
        token=session.token,
        expires_at=session.expires_at,
        profile=ProfileOut.model_validate(session.profile),
    )


@app.post("/api/v1/auth/signout", status_code=204)
def signout(current: CurrentSession = Depends(get_current_session), db: Session = Depends(get_db)):
    auth.signout(db, current.token)
    return Response(status_code=204)


@app.get("/api/v1/auth/me", response_model=ProfileOut)
def me(current: CurrentSession = Depends(get_current_session)):
    return current.profile


# --- Marketplace ---
@app.get("/api/v1/products", response_model=List[ProductOut])
def list_products(search: Optional[str] = None, category: Optional[str] = None,
                  db: Session = Depends(get_db)):
    return [catalog.product_out(p) for p in catalog.list_marketplace(db, search, category)]


@app.get("/api/v1/products/categories", response_model=List[str])
def list_categories(db: Session = Depends(get_db)):
    return catalog.list_categories(db)


@app.get("/api/v1/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Session = Depends(get_db)):
    return catalog.product_out(catalog.get_product(db, product_id))


# The slug segment is cosmetic; lookups go by id only.
@app.get("/api/v1/products/{product_id}/{slug}", response_model=ProductOut)
def get_product_with_slug(product_id: str, slug: str, db: Session = Depends(get_db)):
    return catalog.product_out(catalog.get_product(db, product_id))


# --- Cart ---
@app.get("/api/v1/cart", response_model=CartOut)
def get_cart(current: CurrentSession = Depends(get_current_session), db: Session = Depends(get_db)):
    return cart.cart_out(cart.list_lines(db, current.profile.id))


@app.post("/api/v1/cart/items", response_model=CartOut)
def add_to_cart(payload: CartAddRequest, current: CurrentSession = Depends(get_current_session),
                db: Session = Depends(get_db)):
    cart.add(db, current.profile, payload.product_id)
    return cart.cart_out(cart.list_lines(db, current.profile.id))


@app.patch("/api/v1/cart/items/{item_id}", response_model=CartOut)
def update_cart_quantity(item_id: str, payload: CartQuantityRequest,
                         current: CurrentSession = Depends(get_current_session),
                         db: Session = Depends(get_db)):
    cart.set_quantity(db, current.profile, item_id, payload.quantity)
    return cart.cart_out(cart.list_lines(db, current.profile.id))


# --- Orders ---
@app.post("/api/v1/orders/checkout", response_model=CheckoutResponse, status_code=201)
def place_order(payload: CheckoutRequest, response: Response,
                idempotency_key: Optional[str] = Header(None, max_length=128),
                current: CurrentSession = Depends(get_current_session),
                db: Session = Depends(get_db),
                publisher=Depends(get_event_publisher)):
    if idempotency_key and not payload.idempotency_key:
        payload.idempotency_key = idempotency_key
    order, replayed = checkout.place_order(db, current.profile, payload, publisher)
    if replayed:
        response.status_code = 200
    order = checkout.get_order_for(db, current.profile, order.id)
    return CheckoutResponse(
        order=checkout.order_out(order),
        confirmation_path=checkout.confirmation_path(order.id),
        replayed=replayed,
    )


@app.get("/api/v1/orders", response_model=List[OrderOut])
def list_my_orders(current: CurrentSession = Depends(get_current_session), db: Session = Depends(get_db)):
    return [checkout.order_out(o) for o in checkout.list_buyer_orders(db, current.profile)]


@app.get("/api/v1/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, current: CurrentSession = Depends(get_current_session),
              db: Session = Depends(get_db)):
    return checkout.order_out(checkout.get_order_for(db, current.profile, order_id))


# --- Vendor dashboard ---
@app.post("/api/v1/vendor/profile", response_model=VendorProfileOut, status_code=201)
def create_vendor_profile(payload: VendorProfileCreate, current: CurrentSession = Depends(vendor_only),
                          db: Session = Depends(get_db)):
    return catalog.create_vendor_profile(db, current.profile, payload.store_name, payload.store_description)


@app.get("/api/v1/vendor/profile", response_model=VendorProfileOut)
def get_vendor_profile(current: CurrentSession = Depends(vendor_only)):
    return catalog.require_vendor_profile(current.vendor_profile)


@app.get("/api/v1/vendor/products", response_model=List[ProductOut])
def list_vendor_products(current: CurrentSession = Depends(vendor_only), db: Session = Depends(get_db)):
    vendor = catalog.require_vendor_profile(current.vendor_profile)
    return [catalog.product_out(p) for p in catalog.list_vendor_products(db, vendor)]


@app.post("/api/v1/vendor/products", response_model=ProductOut, status_code=201)
def create_product(payload: ProductCreate, current: CurrentSession = Depends(vendor_only),
                   db: Session = Depends(get_db)):
    vendor = catalog.require_vendor_profile(current.vendor_profile)
    return catalog.product_out(catalog.create_product(db, vendor, payload))


@app.put("/api/v1/vendor/products/{product_id}", response_model=ProductOut)
def update_product(product_id: str, payload: ProductUpdate,
                   current: CurrentSession = Depends(vendor_only), db: Session = Depends(get_db)):
    vendor = catalog.require_vendor_profile(current.vendor_profile)
    return catalog.product_out(catalog.update_product(db, vendor, product_id, payload))


@app.delete("/api/v1/vendor/products/{product_id}", status_code=204)
def delete_product(product_id: str, current: CurrentSession = Depends(vendor_only),
                   db: Session = Depends(get_db)):
    vendor = catalog.require_vendor_profile(current.vendor_profile)
    catalog.delete_product(db, vendor, product_id)
    return Response(status_code=204)


@app.get("/api/v1/vendor/orders", response_model=List[VendorOrderItemOut])
def list_vendor_orders(current: CurrentSession = Depends(vendor_only), db: Session = Depends(get_db)):
    vendor = catalog.require_vendor_profile(current.vendor_profile)
    return moderation.vendor_order_items(db, vendor)


@app.get("/api/v1/vendor/earnings", response_model=EarningsOut)
def get_vendor_earnings(current: CurrentSession = Depends(vendor_only), db: Session = Depends(get_db)):
    vendor = catalog.require_vendor_profile(current.vendor_profile)
    return moderation.vendor_earnings(db, vendor)


# --- Admin panel ---
@app.get("/api/v1/admin/overview", response_model=OverviewOut)
def admin_overview(current: CurrentSession = Depends(admin_only), db: Session = Depends(get_db)):
    return moderation.overview(db)


@app.get("/api/v1/admin/vendors", response_model=List[AdminVendorOut])
def admin_list_vendors(current: CurrentSession = Depends(admin_only), db: Session = Depends(get_db)):
    return moderation.list_vendors(db)


@app.patch("/api/v1/admin/vendors/{vendor_id}/status", response_model=VendorProfileOut)
def admin_set_vendor_status(vendor_id: str, payload: VendorStatusUpdate,
                            current: CurrentSession = Depends(admin_only), db: Session = Depends(get_db)):
    return moderation.set_vendor_status(db, vendor_id, payload.status)


@app.patch("/api/v1/admin/vendors/{vendor_id}/commission", response_model=VendorProfileOut)
def admin_set_commission(vendor_id: str, payload: CommissionUpdate,
                         current: CurrentSession = Depends(admin_only), db: Session = Depends(get_db)):
    return moderation.set_commission_rate(db, vendor_id, payload.commission_rate)


@app.get("/api/v1/admin/orders", response_model=List[AdminOrderOut])
def admin_list_orders(current: CurrentSession = Depends(admin_only), db: Session = Depends(get_db)):
    return moderation.list_orders(db)


@app.patch("/api/v1/admin/orders/{order_id}/status", response_model=OrderOut)
def admin_set_order_status(order_id: str, payload: OrderStatusUpdate,
                           current: CurrentSession = Depends(admin_only),
                           db: Session = Depends(get_db),
                           publisher=Depends(get_event_publisher)):
    order = moderation.set_order_status(db, order_id, payload.status, publisher)
    return checkout.order_out(checkout.get_order_for(db, current.profile, order.id))


@app.get("/api/v1/admin/products", response_model=List[ProductOut])
def admin_list_products(current: CurrentSession = Depends(admin_only), db: Session = Depends(get_db)):
    return [catalog.product_out(p) for p in moderation.list_recent_products(db)]


if __name__ == "__main__":
    import os

    import uvicorn

    port = int(os.getenv("PORT", 5000))
    uvicorn.run(app, host="0.0.0.0", port=port)
