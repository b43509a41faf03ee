"""
Payment API endpoints for Razorpay integration.

Handles:
- Order placement and payment intent creation
- Payment verification, settlement and affiliate attribution
"""

import logging

from fastapi import APIRouter, Response, status

from storefront.api.deps import DB, Payments, Attribution
from storefront.models.order import PaymentMethod
from storefront.schemas.order import CheckoutRequest
from storefront.schemas.payment import (
    AttributionSummary,
    CreatePaymentOrderResponse,
    ErrorResponse,
    PaymentOrderData,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from storefront.services.attribution_service import AttributionService
from storefront.services.order_intake_service import OrderIntakeService
from storefront.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Payments"])


@router.post(
    "/create-order",
    response_model=CreatePaymentOrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    summary="Place an order and create a payment intent",
)
async def create_payment_order(
    data: CheckoutRequest,
    db: DB,
    payment_service: Payments,
):
    """
    Create a pending order from the cart and open a Razorpay order for it.

    Prices come from the catalog, never from the request. When the gateway
    is not configured the intent is a demo intent and ``demo`` is true;
    nothing has been charged.
    """
    intake = OrderIntakeService(db)
    order = await intake.create_order(
        data,
        payment_method=PaymentMethod.RAZORPAY.value if payment_service.is_configured else PaymentMethod.DEMO.value,
    )

    intent = await payment_service.create_intent(
        order_id=order.id,
        amount=order.total,
        currency=order.currency,
        notes={
            "order_number": order.order_number,
            "customer_name": order.customer_name,
            "customer_email": order.customer_email,
        },
    )
    await intake.record_payment_intent(order, intent.gateway_order_id)

    return CreatePaymentOrderResponse(
        success=True,
        demo=intent.demo,
        data=PaymentOrderData(
            order_id=order.id,
            order_number=order.order_number,
            gateway_order_id=intent.gateway_order_id,
            amount=intent.amount,
            currency=intent.currency,
            key_id=intent.key_id,
        ),
    )


@router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Verify payment after completion",
)
async def verify_payment(
    data: VerifyPaymentRequest,
    db: DB,
    payment_service: Payments,
    context: Attribution,
    response: Response,
):
    """
    Verify the Razorpay signature, settle the order and attribute it.

    A verified payment whose order cannot be found is still acknowledged
    (the customer has been charged) with a ``warning``.
    """
    settlement = SettlementService(db, payment_service)
    result = await settlement.settle(
        gateway_order_id=data.gateway_order_id,
        gateway_payment_id=data.gateway_payment_id,
        signature=data.signature,
        local_order_id=data.local_order_id,
    )

    attribution = None
    # Only the callback that settled the order attributes it
    if result.settled:
        order_id = result.order.id
        order_number = result.order.order_number
        order_total = result.order.total

        attributed = await AttributionService(db).attribute_order(
            order_id=order_id,
            order_number=order_number,
            order_total=order_total,
            context=context,
        )
        context.apply(response)

        if attributed is not None:
            attribution = AttributionSummary(
                affiliate_id=attributed.affiliate_id,
                commission_amount=attributed.commission_amount,
            )

    return VerifyPaymentResponse(
        success=result.success,
        order_id=result.order_id,
        payment_id=result.payment_id,
        message=result.message,
        warning=result.warning,
        already_settled=result.already_settled,
        attribution=attribution,
    )
