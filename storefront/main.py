import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Path, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException

from . import admin, auth, catalog, checkout, orders
from .config import Settings
from .db import Database, get_session
from .errors import StoreError, Unauthorized
from .models import DB_INT_MAX, User
from .schemas import (
    AdminProductListOut,
    CategoryCreateIn,
    CategoryEnvelope,
    CategoryListOut,
    CategoryOut,
    CheckoutIn,
    CheckoutOut,
    CredentialsIn,
    OkOut,
    OrderEnvelope,
    OrderListOut,
    OrderOut,
    OrderStatusIn,
    ProductCreateIn,
    ProductEnvelope,
    ProductOut,
    ProductPageOut,
    ProductPatchIn,
    UserEnvelope,
    UserOut,
)

APP_NAME = "storefront"

logger = logging.getLogger(__name__)

# ---- Prometheus metrics ----
REQS = Counter("http_requests_total", "Total HTTP requests", ["service", "path", "method", "status"])
LAT = Histogram("http_request_duration_seconds", "Request latency", ["service", "path", "method"])
ORDERS_CREATED = Counter("orders_created_total", "Orders created successfully")
ORDERS_FAILED = Counter("order_create_failures_total", "Order create failures", ["reason"])


# ---------- Dependencies ----------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def current_user(
    request: Request, session: Session = Depends(get_session), settings: Settings = Depends(get_settings)
) -> Optional[User]:
    """Cookie adapter: None when the session cookie is absent or invalid."""
    return auth.resolve_user(session, request.cookies.get(auth.COOKIE_NAME), settings.session_secret)


def require_user(user: Optional[User] = Depends(current_user)) -> User:
    if user is None:
        raise Unauthorized("Unauthorized")
    return user


def require_admin(
    x_admin_key: Optional[str] = Header(default=None),
    key: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not admin.check_admin_key(x_admin_key or key, settings.admin_key):
        raise Unauthorized("unauthorized")


def set_auth_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        auth.COOKIE_NAME,
        token,
        max_age=auth.SESSION_TTL_SECONDS,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )


def clear_auth_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(auth.COOKIE_NAME, path="/", httponly=True, samesite="lax", secure=settings.cookie_secure)


def user_out(user: User) -> UserOut:
    return UserOut(id=user.id, email=user.email, role=user.role)


# ---------- Public routes ----------
router = APIRouter()


@router.get("/products", response_model=ProductPageOut)
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    page: int = 1,
    limit: int = catalog.DEFAULT_LIMIT,
    session: Session = Depends(get_session),
):
    result = catalog.list_products(session, catalog.ProductFilter.from_params(q, category), page, limit)
    return ProductPageOut(
        items=[ProductOut.model_validate(p) for p in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
        page_count=result.page_count,
    )


@router.get("/products/{slug}", response_model=ProductOut)
def get_product(slug: str, session: Session = Depends(get_session)):
    return ProductOut.model_validate(catalog.get_product_by_slug(session, slug))


@router.get("/categories", response_model=CategoryListOut)
def list_categories(session: Session = Depends(get_session)):
    return CategoryListOut(items=[CategoryOut.model_validate(c) for c in catalog.list_categories(session)])


@router.post("/checkout", response_model=CheckoutOut)
def create_checkout(
    payload: CheckoutIn, user: Optional[User] = Depends(current_user), session: Session = Depends(get_session)
):
    cart = [checkout.CartLine(i.product_id, i.quantity) for i in payload.items]
    try:
        order = checkout.checkout(session, cart, email=payload.email, user=user)
    except StoreError as e:
        ORDERS_FAILED.labels(reason=type(e).__name__).inc()
        raise
    ORDERS_CREATED.inc()
    return CheckoutOut(order_id=order.id, total_cents=order.total_cents)


@router.get("/orders/by-email/{email}", response_model=OrderListOut)
def orders_by_email_path(email: str, session: Session = Depends(get_session)):
    return OrderListOut(items=[OrderOut.model_validate(o) for o in orders.orders_by_email(session, email)])


@router.get("/orders/by-email", response_model=OrderListOut)
def orders_by_email_query(email: Optional[str] = None, session: Session = Depends(get_session)):
    return OrderListOut(items=[OrderOut.model_validate(o) for o in orders.orders_by_email(session, email or "")])


@router.get("/orders/my", response_model=OrderListOut)
def my_orders(user: User = Depends(require_user), session: Session = Depends(get_session)):
    return OrderListOut(items=[OrderOut.model_validate(o) for o in orders.orders_for_user(session, user.id)])


# ---------- Auth ----------
@router.post("/auth/register", response_model=UserEnvelope)
def register(
    payload: CredentialsIn,
    response: Response,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    user = auth.register_user(session, payload.email, payload.password)
    set_auth_cookie(response, auth.sign_session_token(user.id, settings.session_secret), settings)
    return UserEnvelope(user=user_out(user))


@router.post("/auth/login", response_model=UserEnvelope)
def login(
    payload: CredentialsIn,
    response: Response,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    user = auth.authenticate(session, payload.email, payload.password)
    set_auth_cookie(response, auth.sign_session_token(user.id, settings.session_secret), settings)
    return UserEnvelope(user=user_out(user))


@router.get("/auth/me", response_model=UserEnvelope)
def me(user: Optional[User] = Depends(current_user)):
    return UserEnvelope(user=user_out(user) if user is not None else None)


@router.post("/auth/logout", response_model=OkOut)
def logout(response: Response, settings: Settings = Depends(get_settings)):
    clear_auth_cookie(response, settings)
    return OkOut()


# ---------- Admin (x-admin-key) ----------
admin_router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@admin_router.get("/ping", response_model=OkOut)
def admin_ping():
    return OkOut()


@admin_router.get("/products", response_model=AdminProductListOut)
def admin_list_products(session: Session = Depends(get_session)):
    return AdminProductListOut(items=[ProductOut.model_validate(p) for p in admin.list_products(session)])


@admin_router.post("/products", response_model=ProductEnvelope)
def admin_create_product(payload: ProductCreateIn, session: Session = Depends(get_session)):
    return ProductEnvelope(item=ProductOut.model_validate(admin.create_product(session, payload)))


@admin_router.api_route("/products/{pid}", methods=["PUT", "PATCH"], response_model=ProductEnvelope)
def admin_update_product(
    payload: ProductPatchIn, pid: int = Path(le=DB_INT_MAX), session: Session = Depends(get_session)
):
    return ProductEnvelope(item=ProductOut.model_validate(admin.update_product(session, pid, payload)))


@admin_router.delete("/products/{pid}", response_model=OkOut)
def admin_delete_product(pid: int = Path(le=DB_INT_MAX), session: Session = Depends(get_session)):
    admin.delete_product(session, pid)
    return OkOut()


@admin_router.get("/categories", response_model=CategoryListOut)
def admin_list_categories(session: Session = Depends(get_session)):
    return CategoryListOut(items=[CategoryOut.model_validate(c) for c in catalog.list_categories(session)])


@admin_router.post("/categories", response_model=CategoryEnvelope)
def admin_create_category(payload: CategoryCreateIn, session: Session = Depends(get_session)):
    return CategoryEnvelope(item=CategoryOut.model_validate(admin.create_category(session, payload)))


@admin_router.get("/orders", response_model=OrderListOut)
def admin_list_orders(session: Session = Depends(get_session)):
    return OrderListOut(items=[OrderOut.model_validate(o) for o in orders.list_orders(session)])


@admin_router.put("/orders/{oid}", response_model=OrderEnvelope)
def admin_update_order(
    payload: OrderStatusIn, oid: int = Path(le=DB_INT_MAX), session: Session = Depends(get_session)
):
    return OrderEnvelope(item=OrderOut.model_validate(orders.update_order_status(session, oid, payload.status)))


# ---------- Error rendering ----------
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def store_error_handler(request: Request, exc: StoreError):
    return _error(exc.status_code, exc.message)


async def http_error_handler(request: Request, exc: HTTPException):
    return _error(exc.status_code, str(exc.detail))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())[1:])
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return _error(400, "; ".join(parts) or "Bad request")


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ---------- App ----------
def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    owns_db = database is None
    database = database or Database(settings.database_url, schema=settings.db_schema)

    # ---- Startup: ensure schema + tables exist (idempotent) ----
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.init_db()
        yield
        if owns_db:
            database.dispose()

    app = FastAPI(title=APP_NAME, lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        REQS.labels(APP_NAME, request.url.path, request.method, response.status_code).inc()
        LAT.labels(APP_NAME, request.url.path, request.method).observe(time.time() - start)
        return response

    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/health", response_class=PlainTextResponse)
    def health():
        return "ok"

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(admin_router, prefix=settings.api_prefix)
    return app
