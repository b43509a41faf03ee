"""
Affiliate Attribution - converts a paid order plus the visitor's referral
record into a commission.

Attribution is best-effort revenue accounting. It never fails the checkout:
errors are logged and swallowed, and the referral record is cleared on
every terminal outcome so one order cannot be attributed twice.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import settings
from storefront.core.referral_context import AttributionContext
from storefront.models.affiliate import (
    Affiliate,
    AffiliateCommission,
    AffiliateReferral,
    CommissionStatus,
)

logger = logging.getLogger(__name__)


def compute_commission(order_total: Decimal, commission_rate: Decimal) -> Decimal:
    """Commission is a percentage of the order total, rounded to paise."""
    amount = Decimal(order_total) * Decimal(commission_rate) / Decimal("100")
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass
class AttributionResult:
    affiliate_id: str
    commission_id: str
    commission_rate: Decimal
    commission_amount: Decimal


class AttributionService:
    """Attributes completed orders to the referring affiliate."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_affiliate_by_code(self, code: str) -> Optional[Affiliate]:
        result = await self.db.execute(
            select(Affiliate).where(Affiliate.referral_code == code)
        )
        return result.scalar_one_or_none()

    async def get_commission_for_order(self, order_id: str) -> Optional[AffiliateCommission]:
        result = await self.db.execute(
            select(AffiliateCommission).where(AffiliateCommission.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def attribute_order(
        self,
        order_id: str,
        order_number: str,
        order_total: Decimal,
        context: AttributionContext,
        now: Optional[datetime] = None,
    ) -> Optional[AttributionResult]:
        """
        Attribute a paid order to the affiliate in ``context``.

        Returns None when there is nothing to attribute (no record, expired
        record, unknown affiliate, order already attributed) or when
        attribution failed. ``context`` is always cleared on return.
        """
        try:
            record = context.load(now)
            if record is None:
                return None

            affiliate = await self.get_affiliate_by_code(record.code)
            if affiliate is None:
                logger.warning(f"Referral code {record.code} no longer exists; order {order_number} not attributed")
                return None

            if await self.get_commission_for_order(order_id) is not None:
                logger.info(f"Order {order_number} already attributed; skipping")
                return None

            return await self._record_commission(affiliate, order_id, order_number, Decimal(order_total), now)

        except Exception:
            await self.db.rollback()
            logger.exception(f"Error attributing order {order_number} to affiliate")
            return None

        finally:
            context.clear()

    async def _record_commission(
        self,
        affiliate: Affiliate,
        order_id: str,
        order_number: str,
        order_total: Decimal,
        now: Optional[datetime],
    ) -> AttributionResult:
        now = now or datetime.now(timezone.utc)
        # Rate as of now, not as of capture
        commission_rate = (
            affiliate.commission_rate
            if affiliate.commission_rate is not None
            else settings.DEFAULT_COMMISSION_RATE
        )
        commission_amount = compute_commission(order_total, commission_rate)

        commission = AffiliateCommission(
            affiliate_id=affiliate.id,
            order_id=order_id,
            order_number=order_number,
            order_total=order_total,
            commission_rate=commission_rate,
            commission_amount=commission_amount,
            status=CommissionStatus.PENDING.value,
        )
        self.db.add(commission)

        await self.db.execute(
            update(Affiliate)
            .where(Affiliate.id == affiliate.id)
            .values(
                total_orders=Affiliate.total_orders + 1,
                total_sales=Affiliate.total_sales + order_total,
                total_commission=Affiliate.total_commission + commission_amount,
                pending_commission=Affiliate.pending_commission + commission_amount,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        visit = (await self.db.execute(
            select(AffiliateReferral)
            .where(
                AffiliateReferral.affiliate_code == affiliate.referral_code,
                AffiliateReferral.converted.is_(False),
            )
            .order_by(AffiliateReferral.visited_at.desc())
            .limit(1)
        )).scalar_one_or_none()

        if visit is not None:
            visit.converted = True
            visit.order_id = order_id
            visit.order_total = order_total
            visit.commission_amount = commission_amount
            visit.converted_at = now

        await self.db.commit()

        logger.info(
            f"Attributed order {order_number} to affiliate {affiliate.referral_code}: "
            f"{commission_amount} at {commission_rate}%"
        )
        return AttributionResult(
            affiliate_id=affiliate.id,
            commission_id=commission.id,
            commission_rate=Decimal(commission_rate),
            commission_amount=commission_amount,
        )
