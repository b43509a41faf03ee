"""
Order Intake - turns a raw cart into a priced, persisted pending order.

Prices and stock always come from the catalog. Any price the client sent
along with its cart is ignored.
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence
import logging

from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.exceptions import InsufficientStock, ProductNotFound, ValidationError
from storefront.models.order import Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod
from storefront.models.order_sequence import OrderSequence
from storefront.schemas.order import CartItemInput, CheckoutRequest
from storefront.services.catalog_service import CatalogService

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
WHOLE_UNITS = Decimal("1")


def round_money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Pricing:
    """Server-computed pricing block. ``total == subtotal + shipping + tax``."""
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    currency: str


@dataclass(frozen=True)
class DraftItem:
    """Frozen quote for one cart line, taken from the catalog."""
    product_id: str
    product_name: str
    brand_name: Optional[str]
    image: Optional[str]
    size: Optional[str]
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return round_money(self.unit_price * self.quantity)


@dataclass(frozen=True)
class OrderDraft:
    items: List[DraftItem] = field(default_factory=list)
    pricing: Optional[Pricing] = None


def compute_pricing(
    subtotal: Decimal,
    free_shipping_threshold: Optional[Decimal] = None,
    flat_shipping_fee: Optional[Decimal] = None,
    tax_rate: Optional[Decimal] = None,
    currency: Optional[str] = None,
) -> Pricing:
    """
    Compute shipping, tax and total for a subtotal.

    Shipping is free at or above the threshold, otherwise a flat fee.
    Tax is rounded half-up to whole currency units.
    """
    threshold = settings.FREE_SHIPPING_THRESHOLD if free_shipping_threshold is None else free_shipping_threshold
    fee = settings.FLAT_SHIPPING_FEE if flat_shipping_fee is None else flat_shipping_fee
    rate = settings.TAX_RATE if tax_rate is None else tax_rate

    subtotal = round_money(Decimal(subtotal))
    shipping = Decimal("0") if subtotal >= threshold else Decimal(fee)
    tax = (subtotal * Decimal(rate)).quantize(WHOLE_UNITS, rounding=ROUND_HALF_UP)

    return Pricing(
        subtotal=subtotal,
        shipping=round_money(shipping),
        tax=round_money(tax),
        total=round_money(subtotal + shipping + tax),
        currency=currency or settings.CURRENCY,
    )


class OrderIntakeService:
    """Validates carts against the catalog and writes pending orders."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)

    # ==================== ORDER NUMBER GENERATION ====================

    async def generate_order_number(self) -> str:
        """
        Generate unique order number: HOM-YYYYMMDD-XXXX

        Advances today's sequence row with a relative UPDATE. The row stays
        locked until the caller commits, so concurrent intakes are handed
        consecutive numbers instead of colliding on the same one.
        """
        prefix = settings.ORDER_NUMBER_PREFIX
        today = datetime.now(timezone.utc).strftime("%Y%m%d")

        number = await self._advance_sequence(prefix, today)
        if number is None:
            number = await self._start_sequence(prefix, today)
        if number is None:
            # Another intake created today's row first
            number = await self._advance_sequence(prefix, today)
        if number is None:
            raise RuntimeError(f"Order sequence {prefix}-{today} is unavailable")

        return f"{prefix}-{today}-{number:04d}"

    async def _advance_sequence(self, prefix: str, day: str) -> Optional[int]:
        condition = (OrderSequence.prefix == prefix, OrderSequence.sequence_date == day)
        result = await self.db.execute(
            update(OrderSequence)
            .where(*condition)
            .values(current_number=OrderSequence.current_number + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return (await self.db.execute(select(OrderSequence.current_number).where(*condition))).scalar_one()

    async def _start_sequence(self, prefix: str, day: str) -> Optional[int]:
        """Create today's sequence row, continuing after any orders already numbered."""
        existing = (await self.db.execute(
            select(func.count(Order.id)).where(Order.order_number.like(f"{prefix}-{day}-%"))
        )).scalar() or 0

        self.db.add(OrderSequence(prefix=prefix, sequence_date=day, current_number=existing + 1))
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Order sequence {prefix}-{day} created concurrently; retrying")
            return None

        return existing + 1

    # ==================== VALIDATION & PRICING ====================

    async def build_draft(self, items: Sequence[CartItemInput]) -> OrderDraft:
        """
        Re-derive every line from the catalog and price the cart.

        Raises:
            ValidationError: empty cart or non-positive quantity
            ProductNotFound: a line names an unknown or inactive product
            InsufficientStock: requested quantity exceeds current inventory
        """
        if not items:
            raise ValidationError("Cart is empty")

        for item in items:
            if item.quantity <= 0:
                raise ValidationError(f"Invalid quantity for product {item.product_id}")

        products = await self.catalog.get_products(item.product_id for item in items)

        # Lines for the same product (e.g. two sizes) draw on one stock count
        requested: "OrderedDict[str, int]" = OrderedDict()
        for item in items:
            product = products.get(item.product_id)
            if product is None or not product.is_active:
                raise ProductNotFound(item.product_id)
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

        for product_id, quantity in requested.items():
            product = products[product_id]
            if product.inventory < quantity:
                raise InsufficientStock(
                    product_id=product.id,
                    product_name=product.name,
                    available=product.inventory,
                    requested=quantity,
                )

        draft_items = [
            DraftItem(
                product_id=item.product_id,
                product_name=products[item.product_id].name,
                brand_name=products[item.product_id].brand_name,
                image=products[item.product_id].image,
                size=item.size,
                unit_price=round_money(products[item.product_id].price),
                quantity=item.quantity,
            )
            for item in items
        ]

        subtotal = sum((line.line_total for line in draft_items), Decimal("0"))
        return OrderDraft(items=draft_items, pricing=compute_pricing(subtotal))

    # ==================== ORDER CREATION ====================

    async def create_order(self, data: CheckoutRequest, payment_method: Optional[str] = None) -> Order:
        """
        Validate the cart and persist it as a pending order.

        One durable write; nothing is stored if validation fails.
        """
        draft = await self.build_draft(data.items)
        pricing = draft.pricing

        order = Order(
            order_number=await self.generate_order_number(),
            customer_email=data.customer_email,
            customer_name=data.customer_name.strip(),
            customer_phone=data.customer_phone,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=payment_method or (
                PaymentMethod.RAZORPAY.value if settings.razorpay_configured else PaymentMethod.DEMO.value
            ),
            subtotal=pricing.subtotal,
            shipping_cost=pricing.shipping,
            tax=pricing.tax,
            total=pricing.total,
            currency=pricing.currency,
            shipping_address=data.shipping_address.model_dump(),
            billing_address=data.billing_address.model_dump() if data.billing_address else None,
            customer_notes=data.customer_notes,
        )
        order.items = [
            OrderItem(
                position=position,
                product_id=line.product_id,
                product_name=line.product_name,
                brand_name=line.brand_name,
                image=line.image,
                size=line.size,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
            )
            for position, line in enumerate(draft.items)
        ]

        self.db.add(order)
        await self.db.commit()

        logger.info(
            f"Created pending order {order.order_number} ({order.id}) "
            f"total={pricing.total} {pricing.currency} items={len(draft.items)}"
        )
        return order

    async def record_payment_intent(self, order: Order, gateway_order_id: str) -> None:
        """Remember the gateway order ID so the callback can be cross-checked."""
        order.gateway_order_id = gateway_order_id
        await self.db.commit()
