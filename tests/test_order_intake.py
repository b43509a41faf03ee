import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import delete, func, select

from storefront.core.exceptions import InsufficientStock, ProductNotFound, ValidationError
from storefront.models import Order, OrderSequence, OrderStatus, PaymentStatus, Product
from storefront.schemas.order import CartItemInput, CheckoutRequest
from storefront.services.catalog_service import CatalogService
from storefront.services.order_intake_service import OrderIntakeService, compute_pricing

from conftest import add_product, checkout_payload


def checkout_request(items, **overrides) -> CheckoutRequest:
    return CheckoutRequest.model_validate(checkout_payload(items, **overrides))


class TestComputePricing:
    def test_below_threshold_pays_flat_shipping(self):
        pricing = compute_pricing(Decimal("2000"))
        assert pricing.subtotal == Decimal("2000.00")
        assert pricing.shipping == Decimal("500.00")
        assert pricing.tax == Decimal("360.00")
        assert pricing.total == Decimal("2860.00")
        assert pricing.currency == "INR"

    def test_free_shipping_at_threshold(self):
        pricing = compute_pricing(Decimal("10000"))
        assert pricing.shipping == Decimal("0.00")
        assert pricing.tax == Decimal("1800.00")
        assert pricing.total == Decimal("11800.00")

    def test_tax_rounds_half_up_to_whole_units(self):
        # 1250.50 * 0.18 = 225.09 -> 225 ; 1252.78 * 0.18 = 225.5004 -> 226
        assert compute_pricing(Decimal("1250.50")).tax == Decimal("225.00")
        assert compute_pricing(Decimal("1252.78")).tax == Decimal("226.00")

    def test_total_is_sum_of_parts(self):
        pricing = compute_pricing(Decimal("4321.99"))
        assert pricing.total == pricing.subtotal + pricing.shipping + pricing.tax


class TestOrderIntake:
    async def test_worked_example(self, session_factory, db):
        await add_product(session_factory, "p1", price="1000", inventory=5)

        order = await OrderIntakeService(db).create_order(
            checkout_request([{"productId": "p1", "quantity": 2, "size": "M"}])
        )

        assert order.subtotal == Decimal("2000.00")
        assert order.shipping_cost == Decimal("500.00")
        assert order.tax == Decimal("360.00")
        assert order.total == Decimal("2860.00")
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.order_number.startswith("HOM-")
        assert [(i.product_id, i.size, i.quantity, i.unit_price) for i in order.items] == [
            ("p1", "M", 2, Decimal("1000.00"))
        ]

    async def test_client_price_is_ignored(self, session_factory, db):
        await add_product(session_factory, "p1", price="1000", inventory=5)
        service = OrderIntakeService(db)

        honest = await service.create_order(
            checkout_request([{"productId": "p1", "quantity": 2, "price": 1000}])
        )
        tampered = await service.create_order(
            checkout_request([{"productId": "p1", "quantity": 2, "price": 1}])
        )

        assert honest.total == tampered.total == Decimal("2860.00")
        assert tampered.items[0].unit_price == Decimal("1000.00")

    async def test_order_items_are_a_frozen_quote(self, session_factory, db):
        await add_product(session_factory, "p1", price="1000", inventory=5)
        order = await OrderIntakeService(db).create_order(
            checkout_request([{"productId": "p1", "quantity": 1}])
        )

        async with session_factory() as session:
            product = await session.get(Product, "p1")
            product.price = Decimal("5000")
            await session.commit()

        async with session_factory() as session:
            stored = await session.get(Order, order.id)
            await session.refresh(stored, ["items"])
            assert stored.items[0].unit_price == Decimal("1000.00")
            assert stored.total == Decimal("1680.00")

    async def test_unknown_product(self, session_factory, db):
        await add_product(session_factory, "p1")

        with pytest.raises(ProductNotFound) as exc_info:
            await OrderIntakeService(db).create_order(
                checkout_request([
                    {"productId": "p1", "quantity": 1},
                    {"productId": "ghost", "quantity": 1},
                ])
            )

        assert exc_info.value.product_id == "ghost"
        assert (await db.execute(select(func.count(Order.id)))).scalar() == 0

    async def test_inactive_product_is_not_found(self, session_factory, db):
        await add_product(session_factory, "p1", is_active=False)

        with pytest.raises(ProductNotFound):
            await OrderIntakeService(db).create_order(
                checkout_request([{"productId": "p1", "quantity": 1}])
            )

    async def test_insufficient_stock_names_product(self, session_factory, db):
        await add_product(session_factory, "p1", inventory=5)
        await add_product(session_factory, "p2", inventory=1, name="Kelly 28")

        with pytest.raises(InsufficientStock) as exc_info:
            await OrderIntakeService(db).create_order(
                checkout_request([
                    {"productId": "p1", "quantity": 1},
                    {"productId": "p2", "quantity": 2},
                ])
            )

        error = exc_info.value
        assert error.product_id == "p2"
        assert error.available == 1
        assert "Kelly 28" in error.message
        assert (await db.execute(select(func.count(Order.id)))).scalar() == 0

    async def test_lines_for_one_product_share_its_stock(self, session_factory, db):
        await add_product(session_factory, "p1", inventory=3)

        with pytest.raises(InsufficientStock):
            await OrderIntakeService(db).create_order(
                checkout_request([
                    {"productId": "p1", "quantity": 2, "size": "S"},
                    {"productId": "p1", "quantity": 2, "size": "M"},
                ])
            )

    async def test_empty_cart_rejected_by_service(self, db):
        with pytest.raises(ValidationError):
            await OrderIntakeService(db).build_draft([])

    async def test_non_positive_quantity_rejected(self, db):
        item = CartItemInput(product_id="p1", quantity=0)
        with pytest.raises(ValidationError):
            await OrderIntakeService(db).build_draft([item])

    async def test_order_numbers_increment(self, session_factory, db):
        await add_product(session_factory, "p1", inventory=10)
        service = OrderIntakeService(db)

        first = await service.create_order(checkout_request([{"productId": "p1", "quantity": 1}]))
        second = await service.create_order(checkout_request([{"productId": "p1", "quantity": 1}]))

        assert first.order_number.endswith("-0001")
        assert second.order_number.endswith("-0002")

    async def test_concurrent_intakes_get_distinct_numbers(self, session_factory):
        await add_product(session_factory, "p1", inventory=10)

        async def place() -> str:
            async with session_factory() as session:
                order = await OrderIntakeService(session).create_order(
                    checkout_request([{"productId": "p1", "quantity": 1}])
                )
                return order.order_number

        numbers = await asyncio.gather(*(place() for _ in range(4)))

        assert sorted(number[-4:] for number in numbers) == ["0001", "0002", "0003", "0004"]
        async with session_factory() as session:
            assert (await session.execute(select(func.count(Order.id)))).scalar() == 4

    async def test_sequence_continues_after_existing_orders(self, session_factory, db):
        await add_product(session_factory, "p1", inventory=10)
        service = OrderIntakeService(db)
        first = await service.create_order(checkout_request([{"productId": "p1", "quantity": 1}]))

        # Orders numbered before today's sequence row existed
        await db.execute(delete(OrderSequence))
        await db.commit()
        second = await service.create_order(checkout_request([{"productId": "p1", "quantity": 1}]))

        assert first.order_number.endswith("-0001")
        assert second.order_number.endswith("-0002")

    async def test_intake_does_not_touch_inventory(self, session_factory, db):
        await add_product(session_factory, "p1", inventory=5)
        await OrderIntakeService(db).create_order(checkout_request([{"productId": "p1", "quantity": 2}]))

        async with session_factory() as session:
            assert (await session.get(Product, "p1")).inventory == 5


class TestCatalog:
    async def test_reads_authoritative_product(self, session_factory, db):
        await add_product(session_factory, "p1", price="1250.50", inventory=4)

        catalog = CatalogService(db)
        product = await catalog.get_product("p1")

        assert product.price == Decimal("1250.50")
        assert product.inventory == 4
        assert await catalog.get_product("ghost") is None

    async def test_batch_lookup_skips_unknown_ids(self, session_factory, db):
        await add_product(session_factory, "p1")
        await add_product(session_factory, "p2")

        products = await CatalogService(db).get_products(["p2", "ghost", "p1", "p2"])

        assert sorted(products) == ["p1", "p2"]
