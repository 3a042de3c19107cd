import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import __version__
from storefront.models import Base
from storefront.schemas import (
    UserRegister, UserLogin, UserUpdate, UserResponse, AuthResponse, UserUpdateResponse,
    CartItemAdd, CartItemUpdate, CartLine, ProductResponse,
    OrderCreate, OrderResponse, OrderCreatedResponse
)
from storefront.services import AuthService, CartService, CatalogService, CheckoutService
from storefront.shared.logging_config import setup_logging, RequestLoggingMiddleware
from storefront.shared.security_config import (
    setup_rate_limiting, SecurityHeadersMiddleware, LOGIN_RATE_LIMIT
)
from storefront.shared.utils import (
    Settings, Identity, SuccessResponse, ErrorResponse, HealthResponse, AppException,
    create_db_engine, create_session_factory, require_auth
)

logger = logging.getLogger("storefront")

router = APIRouter()

# --- Dependencies ---
async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.sessionmaker() as session:
        yield session

def get_auth_service(request: Request, session: AsyncSession = Depends(get_session)) -> AuthService:
    return AuthService(session, request.app.state.settings)

def get_cart_service(session: AsyncSession = Depends(get_session)) -> CartService:
    return CartService(session)

def get_catalog_service(session: AsyncSession = Depends(get_session)) -> CatalogService:
    return CatalogService(session)

def get_checkout_service(session: AsyncSession = Depends(get_session)) -> CheckoutService:
    return CheckoutService(session)

# --- Endpoints ---

# Auth
@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: UserRegister, auth: AuthService = Depends(get_auth_service)):
    user, token = await auth.register(**payload.model_dump())
    return AuthResponse(
        message="Account created successfully",
        user=UserResponse.model_validate(user),
        **token.model_dump()
    )

async def login(credentials: UserLogin, request: Request, auth: AuthService = Depends(get_auth_service)):
    user, token = await auth.login(credentials.email, credentials.password)
    return AuthResponse(
        message="Login successful",
        user=UserResponse.model_validate(user),
        **token.model_dump()
    )

def login_router(app_limiter: Limiter) -> APIRouter:
    """Login is throttled by the limiter of the app it is mounted on."""
    login_routes = APIRouter()
    login_routes.add_api_route(
        "/login", app_limiter.limit(LOGIN_RATE_LIMIT)(login), methods=["POST"], response_model=AuthResponse
    )
    return login_routes

@router.get("/user", response_model=UserResponse)
async def get_user(identity: Identity = Depends(require_auth), auth: AuthService = Depends(get_auth_service)):
    return await auth.get_current_user(identity)

@router.put("/user", response_model=UserUpdateResponse)
async def update_user(
    payload: UserUpdate,
    identity: Identity = Depends(require_auth),
    auth: AuthService = Depends(get_auth_service)
):
    user = await auth.update_user(identity, **payload.model_dump())
    return UserUpdateResponse(message="User updated successfully", user=UserResponse.model_validate(user))

# Cart
@router.get("/cart", response_model=List[CartLine])
async def get_cart(identity: Identity = Depends(require_auth), cart: CartService = Depends(get_cart_service)):
    return await cart.get_cart(identity.user_id)

@router.post("/cart", response_model=SuccessResponse[None])
async def add_to_cart(
    item: CartItemAdd,
    identity: Identity = Depends(require_auth),
    cart: CartService = Depends(get_cart_service)
):
    await cart.add_to_cart(identity.user_id, item.product_id, item.quantity)
    return SuccessResponse(message="Item added to cart")

@router.put("/cart/{item_id}", response_model=SuccessResponse[dict])
async def update_cart_item(
    item_id: int,
    update: CartItemUpdate,
    identity: Identity = Depends(require_auth),
    cart: CartService = Depends(get_cart_service)
):
    # foreign or missing ids update nothing and still succeed
    updated = await cart.update_cart_item(identity.user_id, item_id, update.quantity)
    return SuccessResponse(data={"updated": updated}, message="Cart updated")

@router.delete("/cart/{item_id}", response_model=SuccessResponse[dict])
async def remove_from_cart(
    item_id: int,
    identity: Identity = Depends(require_auth),
    cart: CartService = Depends(get_cart_service)
):
    removed = await cart.remove_from_cart(identity.user_id, item_id)
    return SuccessResponse(data={"removed": removed}, message="Item removed from cart")

@router.delete("/cart", response_model=SuccessResponse[dict])
async def clear_cart(identity: Identity = Depends(require_auth), cart: CartService = Depends(get_cart_service)):
    removed = await cart.clear_cart(identity.user_id)
    return SuccessResponse(data={"removed": removed}, message="Cart cleared")

# Products
@router.get("/products", response_model=List[ProductResponse])
async def list_products(catalog: CatalogService = Depends(get_catalog_service)):
    return await catalog.list_products()

# Orders
@router.post("/orders", response_model=OrderCreatedResponse)
async def create_order(
    payload: OrderCreate,
    identity: Identity = Depends(require_auth),
    checkout: CheckoutService = Depends(get_checkout_service)
):
    order = await checkout.create_order(identity.user_id, payload.payment_method)
    return OrderCreatedResponse(
        message="Order created successfully",
        order_id=order.id,
        total_amount=order.total_amount
    )

@router.get("/orders", response_model=List[OrderResponse])
async def list_orders(identity: Identity = Depends(require_auth), checkout: CheckoutService = Depends(get_checkout_service)):
    return await checkout.list_orders(identity.user_id)

@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError:
        db_status = "disconnected"

    if db_status != "connected":
        logger.error(f"Health Check Failed: DB={db_status}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service=request.app.state.settings.SERVICE_NAME,
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        database=db_status
    )

# --- Exception Handlers ---
async def app_exception_handler(request: Request, exc: AppException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.detail).model_dump(exclude_none=True),
        headers=exc.headers
    )

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="Invalid request data", details=details).model_dump()
    )

async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error", exc_info=exc, extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="Server error").model_dump(exclude_none=True)
    )

# --- Application ---
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    service_logger = setup_logging(settings.SERVICE_NAME, settings.LOG_LEVEL)

    engine = create_db_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.CREATE_TABLES:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        service_logger.info("Database ready")
        yield
        await engine.dispose()

    app = FastAPI(title="Storefront API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = create_session_factory(engine)

    # Security Setup
    app_limiter = setup_rate_limiting(app, enabled=settings.RATE_LIMIT_ENABLED)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware, service_name=settings.SERVICE_NAME)

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)

    app.include_router(router, prefix=settings.API_PREFIX)
    app.include_router(login_router(app_limiter), prefix=settings.API_PREFIX)
    return app

def run():
    import uvicorn

    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT)
