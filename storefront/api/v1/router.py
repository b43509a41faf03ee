from fastapi import APIRouter

from storefront.api.v1.endpoints import (
    # Checkout
    payments,
    orders,
    # Affiliate program
    referrals,
)

api_router = APIRouter(prefix="/api/v1")


# ==================== Checkout ====================
api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["Payments"]
)

api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)

# ==================== Affiliate Program ====================
api_router.include_router(
    referrals.router,
    prefix="/referrals",
    tags=["Referrals"]
)
