from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from storefront.core.referral_context import AttributionContext, ReferralAttribution, utcnow
from storefront.core.security import decode_referral_token
from storefront.models import Affiliate, AffiliateReferral, AffiliateStatus
from storefront.services.referral_service import (
    EFFECT_CLICK,
    EFFECT_RECORD,
    EFFECT_VISIT,
    CaptureStatus,
)

from conftest import add_affiliate, cookie_deleted, cookie_from, reload


async def visits(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(AffiliateReferral).order_by(AffiliateReferral.visited_at))
        return list(result.scalars())


class TestReferralAttribution:
    def test_expires_after_window(self):
        now = utcnow()
        record = ReferralAttribution.new("JOHN2024", "aff-1", now)

        assert record.expires_at == now + timedelta(days=30)
        assert not record.is_expired(now + timedelta(days=29, hours=23))
        assert not record.is_expired(now + timedelta(days=30))
        assert record.is_expired(now + timedelta(days=30, milliseconds=1))

    def test_token_round_trip_keeps_expiry(self):
        record = ReferralAttribution.new("JOHN2024", "aff-1")
        restored = ReferralAttribution.from_token(record.to_token())

        assert restored.code == "JOHN2024"
        assert restored.affiliate_id == "aff-1"
        assert abs((restored.expires_at - record.expires_at).total_seconds()) < 0.002

    def test_tampered_token_is_discarded(self):
        token = ReferralAttribution.new("JOHN2024", "aff-1").to_token()
        header, payload, signature = token.split(".")

        assert ReferralAttribution.from_token(f"{header}.{payload}.{signature[::-1]}") is None
        assert ReferralAttribution.from_token("not-a-token") is None
        assert decode_referral_token("") is None

    def test_load_clears_expired_record(self):
        captured = utcnow() - timedelta(days=31)
        context = AttributionContext(ReferralAttribution.new("JOHN2024", "aff-1", captured))

        assert context.load() is None
        assert context.record is None
        assert context.changed is True


class TestCaptureService:
    async def test_capture_records_all_effects(self, session_factory, capture_service):
        affiliate = await add_affiliate(session_factory, "JOHN2024")
        context = AttributionContext()

        outcome = await capture_service.capture(
            "JOHN2024", context, landing_page="/products/birkin", user_agent="Mozilla/5.0"
        )

        assert outcome.status == CaptureStatus.CAPTURED
        assert {name: effect.ok for name, effect in outcome.effects.items()} == {
            EFFECT_RECORD: True,
            EFFECT_CLICK: True,
            EFFECT_VISIT: True,
        }
        assert context.record.code == "JOHN2024"
        assert context.record.affiliate_id == affiliate.id
        assert context.changed is True

        assert (await reload(session_factory, Affiliate, affiliate.id)).total_clicks == 1
        [visit] = await visits(session_factory)
        assert visit.affiliate_code == "JOHN2024"
        assert visit.landing_page == "/products/birkin"
        assert visit.user_agent == "Mozilla/5.0"
        assert visit.converted is False

    async def test_first_touch_wins(self, session_factory, capture_service):
        first = await add_affiliate(session_factory, "JOHN2024")
        second = await add_affiliate(session_factory, "JANE2024")
        context = AttributionContext()

        await capture_service.capture("JOHN2024", context)
        outcome = await capture_service.capture("JANE2024", context)

        assert outcome.status == CaptureStatus.KEPT_EXISTING
        assert outcome.effects == {}
        assert context.record.code == "JOHN2024"
        assert (await reload(session_factory, Affiliate, first.id)).total_clicks == 1
        assert (await reload(session_factory, Affiliate, second.id)).total_clicks == 0

    async def test_expired_record_is_replaced(self, session_factory, capture_service):
        await add_affiliate(session_factory, "JOHN2024")
        jane = await add_affiliate(session_factory, "JANE2024")
        old = ReferralAttribution.new("JOHN2024", "aff-old", utcnow() - timedelta(days=31))
        context = AttributionContext(old)

        outcome = await capture_service.capture("JANE2024", context)

        assert outcome.status == CaptureStatus.CAPTURED
        assert context.record.code == "JANE2024"
        assert context.record.affiliate_id == jane.id

    async def test_unknown_code_is_ignored(self, session_factory, capture_service):
        context = AttributionContext()

        outcome = await capture_service.capture("NOBODY", context)

        assert outcome.status == CaptureStatus.INVALID_CODE
        assert context.record is None
        assert context.changed is False
        assert await visits(session_factory) == []

    async def test_unapproved_affiliate_is_ignored(self, session_factory, capture_service):
        pending = await add_affiliate(session_factory, "PEND2024", status=AffiliateStatus.PENDING)
        await add_affiliate(session_factory, "SUSP2024", status=AffiliateStatus.SUSPENDED)
        context = AttributionContext()

        assert (await capture_service.capture("PEND2024", context)).status == CaptureStatus.INVALID_CODE
        assert (await capture_service.capture("SUSP2024", context)).status == CaptureStatus.INVALID_CODE
        assert context.record is None
        assert (await reload(session_factory, Affiliate, pending.id)).total_clicks == 0

    async def test_blank_code_is_ignored(self, capture_service):
        outcome = await capture_service.capture("   ", AttributionContext())
        assert outcome.status == CaptureStatus.INVALID_CODE

    async def test_failed_visit_log_keeps_other_effects(self, session_factory, capture_service, monkeypatch):
        affiliate = await add_affiliate(session_factory, "JOHN2024")

        def broken_visit_log(**kwargs):
            raise SQLAlchemyError("visit log unavailable")

        monkeypatch.setattr("storefront.services.referral_service.AffiliateReferral", broken_visit_log)
        context = AttributionContext()

        outcome = await capture_service.capture("JOHN2024", context)

        assert outcome.status == CaptureStatus.CAPTURED
        assert outcome.effects[EFFECT_VISIT].ok is False
        assert "visit log unavailable" in outcome.effects[EFFECT_VISIT].error
        assert outcome.effects[EFFECT_CLICK].ok is True
        assert outcome.effects[EFFECT_RECORD].ok is True
        assert context.record.code == "JOHN2024"
        assert (await reload(session_factory, Affiliate, affiliate.id)).total_clicks == 1

    async def test_failed_click_counter_keeps_other_effects(self, session_factory, capture_service, monkeypatch):
        await add_affiliate(session_factory, "JOHN2024")

        def broken_update(*args, **kwargs):
            raise SQLAlchemyError("counter unavailable")

        monkeypatch.setattr("storefront.services.referral_service.update", broken_update)

        outcome = await capture_service.capture("JOHN2024", AttributionContext())

        assert outcome.effects[EFFECT_CLICK].ok is False
        assert outcome.effects[EFFECT_VISIT].ok is True
        assert outcome.effects[EFFECT_RECORD].ok is True
        assert len(await visits(session_factory)) == 1


class TestReferralMiddleware:
    async def test_redirects_without_ref_and_sets_cookie(self, client, session_factory, referral_cookie_name):
        affiliate = await add_affiliate(session_factory, "JOHN2024")

        response = await client.get(
            "/products/birkin?color=noir&ref=JOHN2024&size=30",
            headers={"User-Agent": "Mozilla/5.0"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        location = response.headers["location"]
        assert "ref=" not in location
        assert location.endswith("/products/birkin?color=noir&size=30")

        token = cookie_from(response, referral_cookie_name)
        assert token is not None
        claims = decode_referral_token(token)
        assert claims["code"] == "JOHN2024"
        assert claims["affiliate_id"] == affiliate.id

        # Click and visit effects run as a background task on the redirect
        assert (await reload(session_factory, Affiliate, affiliate.id)).total_clicks == 1
        [visit] = await visits(session_factory)
        assert visit.landing_page == "/products/birkin"
        assert visit.user_agent == "Mozilla/5.0"

    async def test_invalid_code_redirects_without_cookie(self, client, referral_cookie_name):
        response = await client.get("/?ref=NOBODY", follow_redirects=False)

        assert response.status_code == 302
        assert "ref=" not in response.headers["location"]
        assert cookie_from(response, referral_cookie_name) is None

    async def test_existing_referral_is_kept(self, client, session_factory, referral_cookie_name):
        john = await add_affiliate(session_factory, "JOHN2024")
        jane = await add_affiliate(session_factory, "JANE2024")
        token = ReferralAttribution.new("JOHN2024", john.id).to_token()
        client.cookies.clear()

        response = await client.get(
            "/?ref=JANE2024",
            headers={"Cookie": f"{referral_cookie_name}={token}"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert cookie_from(response, referral_cookie_name) is None
        assert (await reload(session_factory, Affiliate, jane.id)).total_clicks == 0

    async def test_api_routes_are_not_redirected(self, client, session_factory):
        await add_affiliate(session_factory, "JOHN2024")

        response = await client.get("/api/v1/referrals/current?ref=JOHN2024", follow_redirects=False)

        assert response.status_code == 200
        assert response.json()["has_referral"] is False

    async def test_post_is_not_captured(self, client, session_factory):
        await add_affiliate(session_factory, "JOHN2024")

        response = await client.post("/?ref=JOHN2024", follow_redirects=False)

        assert response.status_code != 302


class TestCurrentReferral:
    async def test_reports_active_referral(self, client, session_factory, referral_cookie_name):
        john = await add_affiliate(session_factory, "JOHN2024")
        token = ReferralAttribution.new("JOHN2024", john.id).to_token()
        client.cookies.clear()

        response = await client.get(
            "/api/v1/referrals/current", headers={"Cookie": f"{referral_cookie_name}={token}"}
        )

        body = response.json()
        assert body["has_referral"] is True
        assert body["referral_code"] == "JOHN2024"
        assert body["affiliate_id"] == john.id

    async def test_expired_referral_is_removed(self, client, referral_cookie_name):
        token = ReferralAttribution.new("JOHN2024", "aff-1", utcnow() - timedelta(days=31)).to_token()
        client.cookies.clear()

        response = await client.get(
            "/api/v1/referrals/current", headers={"Cookie": f"{referral_cookie_name}={token}"}
        )

        assert response.json()["has_referral"] is False
        assert cookie_deleted(response, referral_cookie_name)
