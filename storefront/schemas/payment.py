"""Payment schemas for Razorpay API requests/responses."""
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PaymentOrderData(BaseModel):
    """Payment intent details the frontend needs to open the gateway checkout."""
    order_id: str = Field(..., description="Internal order ID")
    order_number: str
    gateway_order_id: str = Field(..., description="Razorpay order ID, or a demo ID")
    amount: int = Field(..., description="Amount in paise")
    currency: str
    key_id: Optional[str] = None


class CreatePaymentOrderResponse(BaseModel):
    """Response after placing an order. ``demo`` is true when no gateway is configured."""
    success: bool = True
    demo: bool = False
    data: PaymentOrderData


class VerifyPaymentRequest(BaseModel):
    """API request to verify payment after the gateway checkout completes."""
    model_config = ConfigDict(extra='ignore')

    gateway_order_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("gateway_order_id", "gatewayOrderId", "razorpay_order_id"),
    )
    gateway_payment_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("gateway_payment_id", "gatewayPaymentId", "razorpay_payment_id"),
    )
    signature: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("signature", "razorpay_signature"),
    )
    local_order_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("local_order_id", "localOrderId", "order_id"),
    )


class AttributionSummary(BaseModel):
    affiliate_id: str
    commission_amount: Decimal


class VerifyPaymentResponse(BaseModel):
    """Response after payment verification."""
    success: bool
    order_id: str
    payment_id: str
    message: str
    warning: Optional[str] = None
    already_settled: bool = False
    attribution: Optional[AttributionSummary] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    kind: str
