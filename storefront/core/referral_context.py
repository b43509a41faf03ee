"""
Referral attribution context.

The attribution record lives with the browsing client (a signed cookie),
not in the database. Handlers build an ``AttributionContext`` from the
request, hand it explicitly to the capture and attribution services, and
write any change back onto the response:

    context = AttributionContext.from_request(request)
    await attribution_service.attribute_order(..., context=context)
    context.apply(response)

A record is read with ``load()``, which drops it if it has expired, and
consumed with ``clear()``.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel
from starlette.requests import Request
from starlette.responses import Response

from storefront.config import settings
from storefront.core.security import create_referral_token, decode_referral_token

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReferralAttribution(BaseModel):
    """First-touch referral record held by the client."""
    code: str
    affiliate_id: str
    captured_at: datetime
    expires_at: datetime

    @classmethod
    def new(cls, code: str, affiliate_id: str, now: Optional[datetime] = None) -> "ReferralAttribution":
        captured_at = now or utcnow()
        return cls(
            code=code,
            affiliate_id=affiliate_id,
            captured_at=captured_at,
            expires_at=captured_at + timedelta(days=settings.REFERRAL_EXPIRY_DAYS),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def to_token(self) -> str:
        return create_referral_token(self.code, self.affiliate_id, self.captured_at, self.expires_at)

    @classmethod
    def from_token(cls, token: Optional[str]) -> Optional["ReferralAttribution"]:
        if not token:
            return None
        data = decode_referral_token(token)
        if data is None:
            logger.debug("Discarding unreadable referral cookie")
            return None
        return cls(**data)


class AttributionContext:
    """Request-scoped view of the client's referral attribution record."""

    def __init__(self, record: Optional[ReferralAttribution] = None):
        self._record = record
        self._changed = False

    @classmethod
    def from_request(cls, request: Request) -> "AttributionContext":
        token = request.cookies.get(settings.REFERRAL_COOKIE_NAME)
        return cls(ReferralAttribution.from_token(token))

    @property
    def record(self) -> Optional[ReferralAttribution]:
        return self._record

    @property
    def changed(self) -> bool:
        return self._changed

    def load(self, now: Optional[datetime] = None) -> Optional[ReferralAttribution]:
        """Return the record if it is still valid; an expired record is cleared."""
        if self._record is None:
            return None
        if self._record.is_expired(now):
            self.clear()
            return None
        return self._record

    def has_valid_record(self, now: Optional[datetime] = None) -> bool:
        return self.load(now) is not None

    def store(self, record: ReferralAttribution) -> None:
        self._record = record
        self._changed = True

    def clear(self) -> None:
        self._record = None
        self._changed = True

    def apply(self, response: Response) -> None:
        """Write the record (or its removal) onto the outgoing response."""
        if not self._changed:
            return
        if self._record is None:
            response.delete_cookie(settings.REFERRAL_COOKIE_NAME, path="/")
            return
        max_age = int((self._record.expires_at - utcnow()).total_seconds())
        response.set_cookie(
            settings.REFERRAL_COOKIE_NAME,
            self._record.to_token(),
            max_age=max(max_age, 0),
            path="/",
            httponly=True,
            samesite="lax",
        )
