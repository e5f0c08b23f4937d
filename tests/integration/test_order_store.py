"""
Integration Tests - Order Record Store
"""
import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import delete

from storefront.database.models import OrderStatus, PaymentStatus, Product
from storefront.errors import DuplicateOrderNumberError, InvalidTransitionError, NotFoundError
from storefront.orders.numbering import OrderNumberGenerator
from storefront.orders.store import OrderStore


SHIPPING = {
    "full_name": "Nguyen Van An",
    "phone": "0901234567",
    "email": "an.nguyen@example.com",
    "street": "12 Nguyen Hue, District 1",
    "city": "Ho Chi Minh City",
    "country": "VN",
}


@pytest.fixture
def place_order(services, customer, order_day):
    """Check out inline items and return the stored order"""
    async def _place(items, user_id="U1", now=None):
        confirmation = await services.checkout.checkout_items(
            items, customer, user_id=user_id, now=now or order_day,
        )
        return await services.store.get(confirmation.order_id)
    return _place


class StaleNumbers(OrderNumberGenerator):
    """Keeps returning numbers that are already taken"""

    def __init__(self, stale, **kwargs):
        super().__init__(**kwargs)
        self.stale = list(stale)

    async def next_order_number(self, session, now):
        if self.stale:
            return self.stale.pop(0)
        return await super().next_order_number(session, now)


class TestCreate:
    """Tests for order creation"""

    async def test_snapshot_and_totals(self, services, products, order_day):
        """Test items and totals come from the cart snapshot"""
        cart = await services.carts.snapshot_from_items([
            {"product_id": "P1", "quantity": 2},
            {"product_id": "P3", "quantity": 1},
        ])

        order = await services.store.create(cart, SHIPPING, "cash_on_delivery", user_id="U1", now=order_day)

        assert order.order_number == "GP202501150001"
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.subtotal == Decimal("285000")
        assert order.tax_amount == 0
        assert order.shipping_amount == 0
        assert order.total_amount == order.subtotal + order.tax_amount + order.shipping_amount
        assert [(i.product_id, i.quantity, i.product_sku) for i in order.items] == [
            ("P1", 2, "ceramic-mug"),
            ("P3", 1, "SKU-P3"),
        ]
        assert order.currency == "VND"
        assert order.created_at == order_day

    async def test_prices_are_not_reread_from_catalog(self, services, products, session_factory, order_day):
        """Test a price change after the snapshot does not leak into the order"""
        cart = await services.carts.snapshot_from_items([{"product_id": "P2", "quantity": 1}])
        async with session_factory() as session:
            product = await session.get(Product, "P2")
            product.price = Decimal("999999")
            await session.commit()

        order = await services.store.create(cart, SHIPPING, "cash_on_delivery", now=order_day)

        assert order.items[0].unit_price == Decimal("250000")

    async def test_retries_when_number_taken(self, services, products, session_factory, checkout_settings, order_day):
        """Test a stale sequence read is retried with a fresh number"""
        cart = await services.carts.snapshot_from_items([{"product_id": "P3", "quantity": 1}])
        first = await services.store.create(cart, SHIPPING, "cash_on_delivery", now=order_day)

        store = OrderStore(
            session_factory, services.guard, checkout_settings,
            numbers=StaleNumbers([first.order_number]),
        )
        second = await store.create(cart, SHIPPING, "cash_on_delivery", now=order_day)

        assert second.order_number == "GP202501150002"

    async def test_gives_up_after_retries(self, services, products, session_factory, checkout_settings, order_day):
        cart = await services.carts.snapshot_from_items([{"product_id": "P3", "quantity": 1}])
        first = await services.store.create(cart, SHIPPING, "cash_on_delivery", now=order_day)

        store = OrderStore(
            session_factory, services.guard, checkout_settings,
            numbers=StaleNumbers([first.order_number] * checkout_settings.number_retries),
        )
        with pytest.raises(DuplicateOrderNumberError) as exc_info:
            await store.create(cart, SHIPPING, "cash_on_delivery", now=order_day)

        assert exc_info.value.attempts == checkout_settings.number_retries

    async def test_concurrent_creates_get_unique_numbers(self, services, products, order_day):
        """Test same-day concurrent orders never share a number"""
        cart = await services.carts.snapshot_from_items([{"product_id": "P3", "quantity": 1}])

        orders = await asyncio.gather(*[
            services.store.create(cart, SHIPPING, "cash_on_delivery", now=order_day)
            for _ in range(4)
        ])

        numbers = {order.order_number for order in orders}
        assert numbers == {f"GP20250115000{i}" for i in range(1, 5)}


class TestQueries:
    """Tests for lookups and listing"""

    async def test_get_by_id_and_number(self, services, products, place_order):
        order = await place_order([{"product_id": "P3", "quantity": 1}])

        assert (await services.store.get(order.id)).order_number == order.order_number
        assert (await services.store.get(order.order_number)).id == order.id
        assert (await services.store.get_by_number(order.order_number)).id == order.id

    async def test_owner_scope_hides_other_orders(self, services, products, place_order):
        """Test non-owners get NotFound rather than Forbidden"""
        order = await place_order([{"product_id": "P3", "quantity": 1}], user_id="U1")

        assert (await services.store.get(order.id, user_id="U1")).id == order.id
        with pytest.raises(NotFoundError):
            await services.store.get(order.id, user_id="U2")

    async def test_missing_order(self, services):
        with pytest.raises(NotFoundError):
            await services.store.get("GP209901010001")
        with pytest.raises(NotFoundError):
            await services.store.get_by_number("GP209901010001")

    async def test_list_filters_and_pagination(self, services, products, place_order, order_day):
        """Test filters, newest-first ordering and total count"""
        older = await place_order([{"product_id": "P3", "quantity": 1}], user_id="U1", now=order_day - timedelta(days=1))
        mine = await place_order([{"product_id": "P3", "quantity": 1}], user_id="U1")
        theirs = await place_order([{"product_id": "P3", "quantity": 1}], user_id="U2")
        await services.store.update_status(theirs.id, OrderStatus.CONFIRMED)

        page = await services.store.list(user_id="U1")
        assert [o.id for o in page.items] == [mine.id, older.id]
        assert page.total_count == 2

        confirmed = await services.store.list(status=OrderStatus.CONFIRMED)
        assert [o.id for o in confirmed.items] == [theirs.id]

        today = await services.store.list(date_from=datetime(2025, 1, 15), date_to=datetime(2025, 1, 15, 23, 59))
        assert today.total_count == 2

        first_page = await services.store.list(page=1, limit=2)
        second_page = await services.store.list(page=2, limit=2)
        assert first_page.total_count == 3
        assert first_page.total_pages == 2
        assert len(first_page.items) == 2
        assert [o.id for o in second_page.items] == [older.id]


class TestStatusLifecycle:
    """Tests for status transitions and their side effects"""

    async def test_customer_cancel_restores_stock(self, services, products, place_order, get_stock):
        """Test pending order cancel restores stock; a second cancel fails"""
        order = await place_order([{"product_id": "P2", "quantity": 2}], user_id="U1")
        assert await get_stock("P2") == 1

        change = await services.store.cancel_by_customer(order.id, "U1")

        assert change.changed
        assert change.order.status == OrderStatus.CANCELLED
        assert change.order.cancelled_at is not None
        assert await get_stock("P2") == 3

        with pytest.raises(InvalidTransitionError):
            await services.store.cancel_by_customer(order.id, "U1")
        assert await get_stock("P2") == 3

    async def test_customer_cannot_cancel_others_order(self, services, products, place_order):
        order = await place_order([{"product_id": "P3", "quantity": 1}], user_id="U1")

        with pytest.raises(NotFoundError):
            await services.store.cancel_by_customer(order.id, "U2")

    async def test_customer_cannot_cancel_confirmed(self, services, products, place_order, get_stock):
        order = await place_order([{"product_id": "P3", "quantity": 2}], user_id="U1")
        await services.store.update_status(order.id, OrderStatus.CONFIRMED)

        with pytest.raises(InvalidTransitionError):
            await services.store.cancel_by_customer(order.id, "U1")
        assert await get_stock("P3") == 48

    async def test_shipping_and_delivery_stamps(self, services, products, place_order):
        """Test shipped_at, tracking and delivered_at"""
        order = await place_order([{"product_id": "P3", "quantity": 1}])
        tracking = {"carrier": "GHN", "tracking_number": "GHN123"}

        shipped = await services.store.update_status(order.id, OrderStatus.SHIPPED, tracking=tracking, admin_note="fragile")
        assert shipped.order.shipped_at is not None
        assert shipped.order.tracking == tracking
        assert shipped.order.admin_note == "fragile"

        delivered = await services.store.update_status(order.order_number, OrderStatus.DELIVERED)
        assert delivered.previous_status == OrderStatus.SHIPPED
        assert delivered.order.delivered_at is not None

        with pytest.raises(InvalidTransitionError):
            await services.store.update_status(order.id, OrderStatus.CANCELLED)

    async def test_admin_cancel_after_shipping_restocks(self, services, products, place_order, get_stock):
        order = await place_order([{"product_id": "P3", "quantity": 5}])
        await services.store.update_status(order.id, OrderStatus.SHIPPED)

        await services.store.update_status(order.id, OrderStatus.CANCELLED)

        assert await get_stock("P3") == 50

    async def test_backward_move_leaves_order_untouched(self, services, products, place_order):
        order = await place_order([{"product_id": "P3", "quantity": 1}])
        await services.store.update_status(order.id, OrderStatus.PROCESSING)

        with pytest.raises(InvalidTransitionError):
            await services.store.update_status(order.id, OrderStatus.CONFIRMED)

        assert (await services.store.get(order.id)).status == OrderStatus.PROCESSING

    async def test_reapplying_status_is_noop(self, services, products, place_order):
        """Test idempotent re-application fires no side effects"""
        order = await place_order([{"product_id": "P3", "quantity": 1}])
        first = await services.store.update_status(order.id, OrderStatus.SHIPPED)

        again = await services.store.update_status(order.id, OrderStatus.SHIPPED)

        assert not again.changed
        assert again.order.shipped_at == first.order.shipped_at

    async def test_refund_before_shipping_restocks(self, services, products, place_order, get_stock):
        order = await place_order([{"product_id": "P3", "quantity": 5}])

        change = await services.store.update_status(order.id, OrderStatus.REFUNDED)

        assert change.order.payment_status == PaymentStatus.REFUNDED
        assert await get_stock("P3") == 50

    async def test_refund_after_shipping_keeps_stock(self, services, products, place_order, get_stock):
        order = await place_order([{"product_id": "P3", "quantity": 5}])
        await services.store.update_status(order.id, OrderStatus.SHIPPED)

        await services.store.update_status(order.id, OrderStatus.REFUNDED)

        assert await get_stock("P3") == 45

    async def test_cancel_with_missing_product_reports_skip(self, services, products, place_order, session_factory, get_stock):
        """Test a vanished product does not block the cancel"""
        order = await place_order([{"product_id": "P2", "quantity": 1}, {"product_id": "P3", "quantity": 2}])
        async with session_factory() as session:
            await session.execute(delete(Product).where(Product.id == "P2"))
            await session.commit()

        change = await services.store.update_status(order.id, OrderStatus.CANCELLED)

        assert change.order.status == OrderStatus.CANCELLED
        assert change.restock_skipped == ["P2"]
        assert await get_stock("P3") == 50

    async def test_concurrent_cancels_restock_once(self, services, products, place_order, get_stock):
        """Test racing cancels apply once; the loser sees a terminal order"""
        order = await place_order([{"product_id": "P2", "quantity": 2}])

        results = await asyncio.gather(
            services.store.update_status(order.id, OrderStatus.CANCELLED),
            services.store.update_status(order.id, OrderStatus.CANCELLED),
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, Exception) and r.changed) == 1
        assert any(isinstance(r, InvalidTransitionError) for r in results)
        assert await get_stock("P2") == 3

    async def test_release_order_restocks(self, services, products, place_order, get_stock):
        order = await place_order([{"product_id": "P3", "quantity": 3}])

        skipped = await services.guard.release(order.id)

        assert skipped == []
        assert await get_stock("P3") == 50
