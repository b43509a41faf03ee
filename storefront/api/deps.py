from typing import Annotated
import logging

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.core.referral_context import AttributionContext
from storefront.services.payment_service import PaymentService


logger = logging.getLogger(__name__)


def get_payment_service(request: Request) -> PaymentService:
    """
    Dependency to get the payment gateway adapter.

    One adapter per application, created on first use.
    """
    service = getattr(request.app.state, "payment_service", None)
    if service is None:
        service = PaymentService()
        request.app.state.payment_service = service
        if not service.is_configured:
            logger.warning("Razorpay credentials not set - checkout runs in demo mode")
    return service


def get_attribution_context(request: Request) -> AttributionContext:
    """Dependency to read the visitor's referral attribution record."""
    return AttributionContext.from_request(request)


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
Payments = Annotated[PaymentService, Depends(get_payment_service)]
Attribution = Annotated[AttributionContext, Depends(get_attribution_context)]
