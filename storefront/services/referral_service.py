"""
Referral Capture - turns a ``?ref=CODE`` navigation into a first-touch
attribution record.

Capture has three effects that succeed or fail on their own:
- the attribution record written to the client
- the affiliate's click counter incremented by one
- a referral visit appended to the log

Each database effect opens its own session, so one failing never rolls
back another. Every effect reports an ``EffectOutcome``.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from storefront.core.referral_context import AttributionContext, ReferralAttribution
from storefront.database import async_session_factory, get_db_session
from storefront.models.affiliate import Affiliate, AffiliateReferral, AffiliateStatus

logger = logging.getLogger(__name__)

EFFECT_RECORD = "record"
EFFECT_CLICK = "click"
EFFECT_VISIT = "visit"


class CaptureStatus(str, Enum):
    CAPTURED = "captured"                # New attribution stored
    KEPT_EXISTING = "kept_existing"      # A valid earlier referral wins
    INVALID_CODE = "invalid_code"        # Unknown or unapproved code
    LOOKUP_FAILED = "lookup_failed"      # Directory unavailable


@dataclass
class EffectOutcome:
    name: str
    ok: bool
    error: Optional[str] = None


@dataclass
class CaptureOutcome:
    code: str
    status: CaptureStatus
    record: Optional[ReferralAttribution] = None
    effects: Dict[str, EffectOutcome] = field(default_factory=dict)

    @property
    def captured(self) -> bool:
        return self.status == CaptureStatus.CAPTURED


class ReferralCaptureService:
    """Validates referral codes and records referral clicks."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or async_session_factory

    async def resolve_affiliate(self, code: str) -> Optional[Affiliate]:
        """Find an approved affiliate by referral code."""
        async with get_db_session(self.session_factory) as db:
            result = await db.execute(
                select(Affiliate).where(
                    Affiliate.referral_code == code,
                    Affiliate.status == AffiliateStatus.APPROVED.value,
                )
            )
            return result.scalar_one_or_none()

    async def begin_capture(
        self,
        code: str,
        context: AttributionContext,
        now: Optional[datetime] = None,
    ) -> CaptureOutcome:
        """
        Decide whether ``code`` becomes the visitor's attribution and, if so,
        write the record into ``context``. Counter and log effects are left
        to ``run_side_effects``.
        """
        code = (code or "").strip()

        if context.has_valid_record(now):
            logger.debug(f"Referral {code} ignored; {context.record.code} already attributed")
            return CaptureOutcome(code=code, status=CaptureStatus.KEPT_EXISTING, record=context.record)

        if not code:
            return CaptureOutcome(code=code, status=CaptureStatus.INVALID_CODE)

        try:
            affiliate = await self.resolve_affiliate(code)
        except SQLAlchemyError as e:
            logger.error(f"Referral lookup failed for {code}: {e}")
            return CaptureOutcome(code=code, status=CaptureStatus.LOOKUP_FAILED)

        if affiliate is None:
            logger.info(f"Invalid or inactive referral code: {code}")
            return CaptureOutcome(code=code, status=CaptureStatus.INVALID_CODE)

        outcome = CaptureOutcome(code=code, status=CaptureStatus.CAPTURED)
        outcome.effects[EFFECT_RECORD] = self.store_attribution(context, code, affiliate.id, now)
        outcome.record = context.record
        return outcome

    def store_attribution(
        self,
        context: AttributionContext,
        code: str,
        affiliate_id: str,
        now: Optional[datetime] = None,
    ) -> EffectOutcome:
        try:
            context.store(ReferralAttribution.new(code, affiliate_id, now))
        except ValueError as e:
            logger.error(f"Could not store referral {code}: {e}")
            return EffectOutcome(EFFECT_RECORD, ok=False, error=str(e))
        return EffectOutcome(EFFECT_RECORD, ok=True)

    async def record_click(self, affiliate_id: str) -> EffectOutcome:
        """Increment the affiliate's click counter by one."""
        try:
            async with get_db_session(self.session_factory) as db:
                await db.execute(
                    update(Affiliate)
                    .where(Affiliate.id == affiliate_id)
                    .values(total_clicks=Affiliate.total_clicks + 1)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to count referral click for affiliate {affiliate_id}: {e}")
            return EffectOutcome(EFFECT_CLICK, ok=False, error=str(e))
        return EffectOutcome(EFFECT_CLICK, ok=True)

    async def log_visit(
        self,
        affiliate_id: str,
        code: str,
        landing_page: str = "/",
        user_agent: Optional[str] = None,
    ) -> EffectOutcome:
        """Append an unconverted referral visit."""
        try:
            async with get_db_session(self.session_factory) as db:
                db.add(AffiliateReferral(
                    affiliate_id=affiliate_id,
                    affiliate_code=code,
                    landing_page=(landing_page or "/")[:500],
                    user_agent=user_agent[:500] if user_agent else None,
                    converted=False,
                ))
        except SQLAlchemyError as e:
            logger.error(f"Failed to log referral visit for {code}: {e}")
            return EffectOutcome(EFFECT_VISIT, ok=False, error=str(e))
        return EffectOutcome(EFFECT_VISIT, ok=True)

    async def run_side_effects(
        self,
        outcome: CaptureOutcome,
        landing_page: str = "/",
        user_agent: Optional[str] = None,
    ) -> CaptureOutcome:
        """Run the click and visit effects concurrently for a captured referral."""
        if not outcome.captured or outcome.record is None:
            return outcome

        click, visit = await asyncio.gather(
            self.record_click(outcome.record.affiliate_id),
            self.log_visit(outcome.record.affiliate_id, outcome.code, landing_page, user_agent),
        )
        outcome.effects[EFFECT_CLICK] = click
        outcome.effects[EFFECT_VISIT] = visit
        return outcome

    async def capture(
        self,
        code: str,
        context: AttributionContext,
        landing_page: str = "/",
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CaptureOutcome:
        """Capture a referral and wait for all of its effects."""
        outcome = await self.begin_capture(code, context, now)
        return await self.run_side_effects(outcome, landing_page, user_agent)
