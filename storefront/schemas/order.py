"""Checkout order schemas."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import EmailStr, Field

from storefront.schemas.base import BaseCreateSchema, BaseResponseSchema


class AddressInput(BaseCreateSchema):
    """Shipping or billing address as entered at checkout."""
    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    address: str = Field(..., min_length=1)
    apartment: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = "India"
    phone: Optional[str] = None


class CartItemInput(BaseCreateSchema):
    """
    One cart line.

    ``price`` is accepted for compatibility with clients that send their
    cached price, but checkout never reads it.
    """
    product_id: str = Field(..., min_length=1)
    quantity: int
    size: Optional[str] = None
    price: Optional[Decimal] = Field(None, description="Ignored; catalog price is authoritative")


class CheckoutRequest(BaseCreateSchema):
    """API request to place an order and open a payment intent."""
    items: List[CartItemInput]
    shipping_address: AddressInput
    billing_address: Optional[AddressInput] = None
    customer_email: EmailStr
    customer_name: str = Field(..., min_length=1)
    customer_phone: str = Field(..., min_length=5)
    customer_notes: Optional[str] = None


class OrderItemResponse(BaseResponseSchema):
    product_id: str
    product_name: str
    brand_name: Optional[str] = None
    image: Optional[str] = None
    size: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderResponse(BaseResponseSchema):
    """Order read back for the checkout success page."""
    id: str
    order_number: str
    customer_email: str
    customer_name: str
    status: str
    payment_status: str
    items: List[OrderItemResponse]
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal
    currency: str
    shipping_address: dict
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
