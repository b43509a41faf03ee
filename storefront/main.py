from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from storefront.config import settings
from storefront.api.v1.router import api_router
from storefront.core.exceptions import CheckoutError
from storefront.database import init_db, async_session_factory
from storefront.middleware.referral import referral_middleware


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create database tables
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()
    if not settings.razorpay_configured:
        logger.warning("Razorpay credentials not set - checkout runs in demo mode")

    yield

    # Shutdown
    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Payments", "description": "Checkout: order placement, Razorpay intents, payment verification"},
    {"name": "Orders", "description": "Order read back for the checkout success page"},
    {"name": "Referrals", "description": "Affiliate referral attribution"},
]

API_DESCRIPTION = """
## Storefront Checkout API

Checkout settlement and affiliate attribution for the storefront.

### Flow

1. `POST /api/v1/payments/create-order` - price the cart from the catalog, store a pending order, open a Razorpay order
2. Customer pays in the Razorpay checkout
3. `POST /api/v1/payments/verify` - verify the signature, mark the order paid, commit inventory, attribute to the referring affiliate

Referral links are any page URL with `?ref=CODE`.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | ValidationError / InvalidSignature |
| 404 | ProductNotFound |
| 409 | InsufficientStock |
| 422 | Request body failed schema validation |
| 502 | PaymentGatewayError |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Capture ?ref= referral codes on page navigation
app.middleware("http")(referral_middleware)

# Include API router
app.include_router(api_router)


@app.exception_handler(CheckoutError)
async def checkout_exception_handler(request: Request, exc: CheckoutError):
    """Render checkout failures as {success: false, error, kind}."""
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown",
            "payment_gateway": "configured" if settings.razorpay_configured else "demo",
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
