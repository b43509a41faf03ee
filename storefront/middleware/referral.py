"""
Referral capture middleware.

Any page navigation carrying the referral query parameter (``?ref=CODE``)
is answered with a redirect to the same URL without it. If the code is
captured, the attribution cookie rides on that redirect and the click and
visit effects run as a background task after the response is sent, so
page rendering never waits on them.
"""
from fastapi import Request
from starlette.background import BackgroundTask
from starlette.responses import RedirectResponse
import logging

from storefront.config import settings
from storefront.core.referral_context import AttributionContext
from storefront.services.referral_service import ReferralCaptureService

logger = logging.getLogger(__name__)

# API and tooling routes never carry page navigation
SKIP_PREFIXES = (
    "/api",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/health",
)


def get_capture_service(request: Request) -> ReferralCaptureService:
    service = getattr(request.app.state, "referral_capture_service", None)
    if service is None:
        service = ReferralCaptureService()
        request.app.state.referral_capture_service = service
    return service


async def referral_middleware(request: Request, call_next):
    """
    Middleware to capture affiliate referral codes from page URLs.

    First touch wins: a code is ignored while a valid earlier referral is
    stored. Unknown or unapproved codes are ignored silently.
    """
    param = settings.REFERRAL_QUERY_PARAM

    if request.method not in ("GET", "HEAD") or param not in request.query_params:
        return await call_next(request)

    if request.url.path.startswith(SKIP_PREFIXES):
        return await call_next(request)

    code = request.query_params.get(param, "")
    context = AttributionContext.from_request(request)
    service = get_capture_service(request)

    outcome = await service.begin_capture(code, context)

    clean_url = request.url.remove_query_params(param)
    response = RedirectResponse(str(clean_url), status_code=302)

    if outcome.captured:
        logger.info(f"Captured referral {outcome.code} on {request.url.path}")
        response.background = BackgroundTask(
            service.run_side_effects,
            outcome,
            request.url.path,
            request.headers.get("user-agent"),
        )

    context.apply(response)
    return response
