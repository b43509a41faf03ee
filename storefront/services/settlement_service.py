"""
Payment verification and settlement.

Settlement of a verified payment is one transaction: the order moves to
processing/paid and every line item's product inventory is decremented
relative to its current value. Either all of it commits or none of it does.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.exceptions import InsufficientStock, InvalidSignature, SettlementPartialWarning
from storefront.models.order import Order, OrderStatus, PaymentStatus
from storefront.models.product import Product
from storefront.services.payment_service import PaymentService

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("storefront.security")

# Columns written by settlement, reloaded after the bulk UPDATE
SETTLEMENT_FIELDS = [
    "status",
    "payment_status",
    "gateway_order_id",
    "gateway_payment_id",
    "paid_at",
    "updated_at",
]


@dataclass
class SettlementResult:
    """Outcome of a verified payment callback."""
    order_id: str
    payment_id: str
    order: Optional[Order] = None
    settled: bool = False
    already_settled: bool = False
    warning: Optional[str] = None

    @property
    def success(self) -> bool:
        return True

    @property
    def message(self) -> str:
        if self.warning:
            return self.warning
        if self.already_settled:
            return "Payment already verified"
        return "Payment verified successfully"


class SettlementService:
    """Verifies gateway callbacks and commits paid orders."""

    def __init__(
        self,
        db: AsyncSession,
        payment_service: Optional[PaymentService] = None,
        allow_oversell: Optional[bool] = None,
    ):
        self.db = db
        self.payment_service = payment_service or PaymentService()
        self.allow_oversell = settings.ALLOW_OVERSELL if allow_oversell is None else allow_oversell

    async def get_order(self, order_id: str) -> Optional[Order]:
        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def payment_used_elsewhere(self, gateway_payment_id: str, order_id: str) -> bool:
        """True when another order already carries this gateway payment."""
        result = await self.db.execute(
            select(Order.id).where(
                Order.gateway_payment_id == gateway_payment_id,
                Order.id != order_id,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def settle(
        self,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        local_order_id: str,
    ) -> SettlementResult:
        """
        Verify a payment callback and settle the order it names.

        Raises:
            InvalidSignature: signature mismatch, the order has no recorded
                payment intent or a different one, or the payment already
                settled another order. Nothing is changed.
            InsufficientStock: only when overselling is disabled and a line
                item can no longer be covered. The whole batch is rolled back.
        """
        if not self.payment_service.verify_signature(gateway_order_id, gateway_payment_id, signature):
            security_logger.warning(
                f"Invalid payment signature: gateway_order={gateway_order_id} "
                f"payment={gateway_payment_id} local_order={local_order_id}"
            )
            raise InvalidSignature()

        order = await self.get_order(local_order_id)

        if order is None:
            warning = SettlementPartialWarning(local_order_id)
            logger.error(
                f"OPERATIONAL ALERT: {warning.message}. "
                f"gateway_order={gateway_order_id} payment={gateway_payment_id} - "
                f"payment is captured by the gateway; reconcile manually"
            )
            return SettlementResult(
                order_id=local_order_id,
                payment_id=gateway_payment_id,
                warning=warning.message,
            )

        if order.gateway_order_id is None or order.gateway_order_id != gateway_order_id:
            security_logger.warning(
                f"Signed gateway order {gateway_order_id} does not match order "
                f"{order.id} (expects {order.gateway_order_id})"
            )
            raise InvalidSignature("Payment does not belong to this order")

        if await self.payment_used_elsewhere(gateway_payment_id, order.id):
            security_logger.warning(
                f"Payment {gateway_payment_id} already settled another order; "
                f"rejected for order {order.id}"
            )
            raise InvalidSignature("Payment already applied to another order")

        if order.is_paid:
            logger.info(
                f"Order {order.order_number} already settled "
                f"(payment {order.gateway_payment_id}); skipping"
            )
            return SettlementResult(
                order_id=order.id,
                payment_id=order.gateway_payment_id or gateway_payment_id,
                order=order,
                already_settled=True,
            )

        return await self._commit_settlement(order, gateway_order_id, gateway_payment_id)

    async def _commit_settlement(
        self,
        order: Order,
        gateway_order_id: str,
        gateway_payment_id: str,
    ) -> SettlementResult:
        now = datetime.now(timezone.utc)
        line_count = len(order.items)

        try:
            # Compare-and-set on payment status so a duplicate callback
            # racing this one cannot decrement stock a second time
            result = await self.db.execute(
                update(Order)
                .where(
                    Order.id == order.id,
                    Order.payment_status != PaymentStatus.PAID.value,
                )
                .values(
                    status=OrderStatus.PROCESSING.value,
                    payment_status=PaymentStatus.PAID.value,
                    gateway_order_id=gateway_order_id,
                    gateway_payment_id=gateway_payment_id,
                    paid_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.refresh(order, SETTLEMENT_FIELDS)
                logger.info(f"Order {order.order_number} settled concurrently; skipping")
                return SettlementResult(
                    order_id=order.id,
                    payment_id=order.gateway_payment_id or gateway_payment_id,
                    order=order,
                    already_settled=True,
                )

            for item in order.items:
                stmt = (
                    update(Product)
                    .where(Product.id == item.product_id)
                    .values(inventory=Product.inventory - item.quantity)
                    .execution_options(synchronize_session=False)
                )
                if not self.allow_oversell:
                    stmt = stmt.where(Product.inventory >= item.quantity)

                decremented = await self.db.execute(stmt)
                if decremented.rowcount == 0 and not self.allow_oversell:
                    available = (await self.db.execute(
                        select(Product.inventory).where(Product.id == item.product_id)
                    )).scalar() or 0
                    raise InsufficientStock(
                        product_id=item.product_id,
                        product_name=item.product_name,
                        available=available,
                        requested=item.quantity,
                    )

            await self.db.commit()
        except IntegrityError:
            # Unique payment id lost a race with another order
            await self.db.rollback()
            security_logger.warning(
                f"Payment {gateway_payment_id} already settled another order; "
                f"rolled back settlement of order {order.id}"
            )
            raise InvalidSignature("Payment already applied to another order")
        except Exception:
            await self.db.rollback()
            logger.error(
                f"Settlement rolled back for order {order.id} "
                f"(payment {gateway_payment_id})"
            )
            raise

        await self.db.refresh(order, SETTLEMENT_FIELDS)
        logger.info(
            f"Settled order {order.order_number}: payment {gateway_payment_id}, "
            f"{line_count} line item(s) decremented"
        )
        return SettlementResult(
            order_id=order.id,
            payment_id=gateway_payment_id,
            order=order,
            settled=True,
        )
