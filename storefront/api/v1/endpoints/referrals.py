from fastapi import APIRouter, Response

from storefront.api.deps import Attribution
from storefront.schemas.affiliate import CurrentReferralResponse


router = APIRouter(tags=["Referrals"])


@router.get("/current", response_model=CurrentReferralResponse)
async def get_current_referral(context: Attribution, response: Response):
    """
    Get the visitor's active referral attribution.

    An expired record is reported as absent and removed from the client.
    """
    record = context.load()
    context.apply(response)

    if record is None:
        return CurrentReferralResponse(has_referral=False)

    return CurrentReferralResponse(
        has_referral=True,
        referral_code=record.code,
        affiliate_id=record.affiliate_id,
        captured_at=record.captured_at,
        expires_at=record.expires_at,
    )
