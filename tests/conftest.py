"""
Shared fixtures: a throwaway SQLite database per test, the ASGI app wired
to it, and a stub Razorpay client.
"""
from decimal import Decimal
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront.config import settings
from storefront.core.security import compute_payment_signature
from storefront.database import get_db, init_db
from storefront.main import app
from storefront.models import Affiliate, AffiliateStatus, Order, Product
from storefront.schemas.order import CheckoutRequest
from storefront.services.order_intake_service import OrderIntakeService
from storefront.services.payment_service import PaymentService
from storefront.services.referral_service import ReferralCaptureService

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "rzp_test_secret"


class StubOrderAPI:
    """Stands in for ``razorpay.Client().order``."""

    def __init__(self):
        self.created = []
        self.error: Optional[Exception] = None

    def create(self, data):
        if self.error is not None:
            raise self.error
        self.created.append(data)
        return {
            "id": f"order_TEST{len(self.created):04d}",
            "entity": "order",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data["receipt"],
            "notes": data["notes"],
            "status": "created",
        }


class StubRazorpayClient:
    def __init__(self):
        self.order = StubOrderAPI()


def sign(gateway_order_id: str, gateway_payment_id: str, secret: str = TEST_KEY_SECRET) -> str:
    return compute_payment_signature(gateway_order_id, gateway_payment_id, secret)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront_test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return StubRazorpayClient()


@pytest.fixture
def payment_service(gateway):
    return PaymentService(key_id=TEST_KEY_ID, key_secret=TEST_KEY_SECRET, client=gateway)


@pytest.fixture
def capture_service(session_factory):
    return ReferralCaptureService(session_factory)


@pytest.fixture
async def client(session_factory, payment_service, capture_service):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.payment_service = payment_service
    app.state.referral_capture_service = capture_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver.local") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.payment_service = None
    app.state.referral_capture_service = None


@pytest.fixture
def referral_cookie_name():
    return settings.REFERRAL_COOKIE_NAME


async def add_product(
    session_factory,
    product_id: str = "p1",
    price: str = "1000",
    inventory: int = 5,
    name: Optional[str] = None,
    is_active: bool = True,
) -> Product:
    async with session_factory() as session:
        product = Product(
            id=product_id,
            name=name or f"Product {product_id}",
            slug=f"product-{product_id}",
            brand_name="Maison",
            image=f"https://cdn.example.com/{product_id}.jpg",
            price=Decimal(price),
            inventory=inventory,
            is_active=is_active,
        )
        session.add(product)
        await session.commit()
        return product


async def add_affiliate(
    session_factory,
    code: str = "JOHN2024",
    status: AffiliateStatus = AffiliateStatus.APPROVED,
    commission_rate: Optional[str] = "10",
) -> Affiliate:
    async with session_factory() as session:
        affiliate = Affiliate(
            email=f"{code.lower()}@example.com",
            first_name=code.title(),
            referral_code=code,
            status=status.value,
            commission_rate=Decimal(commission_rate) if commission_rate is not None else None,
        )
        session.add(affiliate)
        await session.commit()
        return affiliate


async def reload(session_factory, model, pk):
    async with session_factory() as session:
        return await session.get(model, pk)


def checkout_payload(items, **overrides) -> dict:
    """A camelCase checkout body, the way the storefront client sends it."""
    data = {
        "items": items,
        "shippingAddress": {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "address": "12 Marine Drive",
            "city": "Mumbai",
            "state": "MH",
            "postalCode": "400002",
            "country": "India",
            "phone": "+919800000000",
        },
        "customerEmail": "ada@example.com",
        "customerName": "Ada Lovelace",
        "customerPhone": "+919800000000",
    }
    data.update(overrides)
    return data


async def place_order(session_factory, items, gateway_order_id: Optional[str] = "order_TEST0001") -> Order:
    """Create a pending order and record its gateway order ID."""
    async with session_factory() as session:
        intake = OrderIntakeService(session)
        order = await intake.create_order(CheckoutRequest.model_validate(checkout_payload(items)))
        if gateway_order_id is not None:
            await intake.record_payment_intent(order, gateway_order_id)
        return order


def cookie_from(response, name: str) -> Optional[str]:
    """Value of a Set-Cookie header on ``response``, read without a cookie jar."""
    for header in response.headers.get_list("set-cookie"):
        key, _, rest = header.partition("=")
        if key.strip() == name:
            return rest.split(";", 1)[0].strip('"')
    return None


def cookie_deleted(response, name: str) -> bool:
    return any(
        header.startswith(f"{name}=") and "Max-Age=0" in header
        for header in response.headers.get_list("set-cookie")
    )
