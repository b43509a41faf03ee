"""
Payment Service - Razorpay Integration

Handles payment processing for the storefront checkout:
- Create Razorpay orders (payment intents)
- Demo intents when the gateway is not configured
- Verify payment signatures
"""

import logging
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any

from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from storefront.config import settings
from storefront.core.exceptions import PaymentGatewayError
from storefront.core.security import verify_payment_signature

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount to paise (Razorpay uses smallest currency unit)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentIntent(BaseModel):
    """A remote payment intent, or a clearly flagged local demo intent."""
    gateway_order_id: str
    amount: int  # In paise
    currency: str
    receipt: str
    demo: bool = False
    key_id: Optional[str] = None
    notes: Dict[str, str] = {}


class PaymentService:
    """
    Service for handling Razorpay payments.

    Without credentials every intent is a demo intent and no request
    leaves the process.
    """

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        client: Any = None,
    ):
        """Initialize Razorpay client."""
        self.key_id = settings.RAZORPAY_KEY_ID if key_id is None else key_id
        self.key_secret = settings.RAZORPAY_KEY_SECRET if key_secret is None else key_secret
        self.client = client
        if self.client is None and self.is_configured:
            # Imported only when credentials exist; demo mode needs no SDK
            import razorpay

            self.client = razorpay.Client(auth=(self.key_id, self.key_secret))

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    async def create_intent(
        self,
        order_id: str,
        amount: Decimal,
        currency: Optional[str] = None,
        notes: Optional[Dict[str, str]] = None,
    ) -> PaymentIntent:
        """
        Create a Razorpay order sized to the order total.

        The local order ID is the receipt and is repeated in the notes, so
        the payment callback can be matched to the order without a lookup
        table.

        Raises:
            PaymentGatewayError: if the gateway call fails
        """
        currency = currency or settings.CURRENCY
        amount_in_paise = to_minor_units(amount)
        intent_notes = {"order_id": str(order_id), **(notes or {})}

        if not self.is_configured:
            logger.info(f"Razorpay not configured - demo intent for order {order_id}")
            return PaymentIntent(
                gateway_order_id=f"demo_order_{int(time.time() * 1000)}",
                amount=amount_in_paise,
                currency=currency,
                receipt=str(order_id),
                demo=True,
                notes=intent_notes,
            )

        order_data = {
            "amount": amount_in_paise,
            "currency": currency,
            "receipt": str(order_id),
            "notes": intent_notes,
        }

        try:
            razorpay_order = await run_in_threadpool(self.client.order.create, data=order_data)
        except Exception as e:
            logger.error(f"Failed to create Razorpay order for order {order_id}: {e}")
            raise PaymentGatewayError(f"Failed to create payment order: {e}") from e

        logger.info(
            f"Created Razorpay order {razorpay_order['id']} "
            f"for order {order_id}"
        )

        return PaymentIntent(
            gateway_order_id=razorpay_order["id"],
            amount=razorpay_order.get("amount", amount_in_paise),
            currency=razorpay_order.get("currency", currency),
            receipt=razorpay_order.get("receipt", str(order_id)),
            key_id=self.key_id,
            notes=razorpay_order.get("notes") or intent_notes,
        )

    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        """Verify payment signature from Razorpay."""
        return verify_payment_signature(
            gateway_order_id,
            gateway_payment_id,
            signature,
            secret=self.key_secret,
        )
