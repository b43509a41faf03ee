"""Affiliate referral schemas."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class CurrentReferralResponse(BaseModel):
    """The visitor's active referral attribution, if any."""
    has_referral: bool
    referral_code: Optional[str] = None
    affiliate_id: Optional[str] = None
    captured_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
