"""
Integration Tests - Checkout Orchestrator
"""
import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from storefront.database.models import Order, OrderStatus
from storefront.database.seed import seed_cart
from storefront.errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidCustomerError,
    InvalidTransitionError,
    NotFoundError,
    ProjectionWriteFailedError,
)


async def count_orders(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(Order.id)))).scalar_one()


class TestCheckoutHappyPath:
    """Tests for a successful checkout"""

    async def test_user_cart_checkout(self, services, products, session_factory, customer, order_day, get_stock):
        """Test cart U1 (P1 x1, P2 x2) becomes GP202501150001"""
        await seed_cart(session_factory, "U1", [
            {"product_id": "P1", "quantity": 1},
            {"product_id": "P2", "quantity": 2},
        ])

        confirmation = await services.checkout.checkout_user_cart("U1", customer, now=order_day)

        assert confirmation.order_number == "GP202501150001"
        assert confirmation.total_amount == Decimal("620000")
        assert confirmation.item_count == 2
        assert not confirmation.degraded
        assert await get_stock("P1") == 1
        assert await get_stock("P2") == 1

        cart = await services.carts.get_cart("U1")
        assert cart.is_empty

        order = await services.store.get(confirmation.order_id, user_id="U1")
        assert order.status == OrderStatus.PENDING
        assert order.shipping_address["country"] == "VN"
        assert order.payment_method == "cash_on_delivery"
        assert order.customer_note == "Leave at reception"

        history = await services.history.find_by_email("an.nguyen@example.com")
        assert history.user_id == "U1"
        assert [e.order_number for e in history.entries] == ["GP202501150001"]
        assert history.entries[0].products[0]["product_slug"] == "ceramic-mug"

    async def test_numbers_increase_within_the_day(self, services, products, customer, order_day):
        first = await services.checkout.checkout_items([{"product_id": "P3", "quantity": 1}], customer, now=order_day)
        second = await services.checkout.checkout_items([{"product_id": "P3", "quantity": 1}], customer, now=order_day)

        assert (first.order_number, second.order_number) == ("GP202501150001", "GP202501150002")

    async def test_guest_checkout_leaves_carts_alone(self, services, products, session_factory, customer, order_day):
        await seed_cart(session_factory, "U1", [{"product_id": "P3", "quantity": 1}])

        confirmation = await services.checkout.checkout_items([{"product_id": "P3", "quantity": 2}], customer, now=order_day)

        assert confirmation.cart_cleared
        assert not (await services.carts.get_cart("U1")).is_empty
        assert (await services.store.get(confirmation.order_id)).user_id is None

    async def test_inline_items_keep_stored_cart(self, services, products, session_factory, customer, order_day):
        """Test a logged-in caller sending items does not lose the saved cart"""
        await seed_cart(session_factory, "U1", [{"product_id": "P2", "quantity": 1}])

        confirmation = await services.checkout.checkout_items(
            [{"product_id": "P3", "quantity": 1}], customer, user_id="U1", now=order_day,
        )

        cart = await services.carts.get_cart("U1")
        assert [(line.product_id, line.quantity) for line in cart.lines] == [("P2", 1)]
        assert (await services.store.get(confirmation.order_id)).user_id == "U1"

    async def test_history_filed_under_account_email(self, services, products, customer, order_day):
        """Test a logged-in account email wins over the one typed on the form"""
        await services.checkout.checkout_items(
            [{"product_id": "P3", "quantity": 1}], customer,
            user_id="U1", account_email="account@example.com", now=order_day,
        )

        assert await services.history.find_by_email("account@example.com") is not None
        assert await services.history.find_by_email(customer.email) is None


class TestCheckoutRejections:
    """Tests for checkouts that must not create an order"""

    async def test_empty_cart(self, services, products, customer, session_factory):
        with pytest.raises(EmptyCartError):
            await services.checkout.checkout_user_cart("U-nobody", customer)
        with pytest.raises(EmptyCartError):
            await services.checkout.checkout_items([], customer)

        assert await count_orders(session_factory) == 0

    async def test_invalid_customer_debits_nothing(self, services, products, customer, session_factory, get_stock):
        """Test customer validation runs before any reservation"""
        bad = replace(customer, email="not-an-email", phone="")

        with pytest.raises(InvalidCustomerError) as exc_info:
            await services.checkout.checkout_items([{"product_id": "P1", "quantity": 1}], bad)

        assert exc_info.value.missing == ["phone"]
        assert "email" in exc_info.value.invalid
        assert await get_stock("P1") == 2
        assert await count_orders(session_factory) == 0

    async def test_customer_checked_before_products(self, services, products, customer):
        """Test a bad form is reported even when an item is unknown"""
        with pytest.raises(InvalidCustomerError):
            await services.checkout.checkout_items(
                [{"product_id": "P404", "quantity": 1}], replace(customer, address=""),
            )

    async def test_insufficient_stock(self, services, products, customer, session_factory, get_stock):
        """Test P1 x3 with 2 in stock fails with the triple and no order"""
        with pytest.raises(InsufficientStockError) as exc_info:
            await services.checkout.checkout_items([{"product_id": "P1", "quantity": 3}], customer)

        assert exc_info.value.to_dict()["product"] == "P1"
        assert (exc_info.value.requested, exc_info.value.available) == (3, 2)
        assert await get_stock("P1") == 2
        assert await count_orders(session_factory) == 0

    async def test_unknown_product(self, services, products, customer):
        with pytest.raises(NotFoundError):
            await services.checkout.checkout_items([{"product_id": "P404", "quantity": 1}], customer)


class TestCheckoutConcurrency:
    """Tests for racing checkouts"""

    async def test_last_units_sold_once(self, services, products, customer, session_factory, order_day, get_stock):
        """Test two checkouts of P2 x2 (3 in stock): exactly one succeeds"""
        results = await asyncio.gather(
            services.checkout.checkout_items([{"product_id": "P2", "quantity": 2}], customer, now=order_day),
            services.checkout.checkout_items([{"product_id": "P2", "quantity": 2}], customer, now=order_day),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert len(failed) == 1 and isinstance(failed[0], InsufficientStockError)
        assert await get_stock("P2") == 1
        assert await count_orders(session_factory) == 1

    async def test_concurrent_checkouts_get_unique_numbers(self, services, products, customer, order_day):
        confirmations = await asyncio.gather(*[
            services.checkout.checkout_items([{"product_id": "P3", "quantity": 1}], customer, now=order_day)
            for _ in range(5)
        ])

        assert len({c.order_number for c in confirmations}) == 5


class TestCheckoutFailureHandling:
    """Tests for compensation and degraded completion"""

    async def test_order_write_failure_releases_stock(self, services, products, customer, session_factory, monkeypatch, get_stock):
        async def broken_create(*args, **kwargs):
            raise OperationalError("INSERT INTO orders", {}, Exception("disk I/O error"))

        monkeypatch.setattr(services.store, "create", broken_create)

        with pytest.raises(OperationalError):
            await services.checkout.checkout_items([{"product_id": "P2", "quantity": 3}], customer)

        assert await get_stock("P2") == 3
        assert await count_orders(session_factory) == 0

    async def test_history_failure_is_not_fatal(self, services, products, customer, monkeypatch, order_day):
        """Test the order stands when the history append fails"""
        async def broken_append(key, summary):
            raise ProjectionWriteFailedError(key.email, "database is locked")

        monkeypatch.setattr(services.history, "append", broken_append)

        confirmation = await services.checkout.checkout_items([{"product_id": "P3", "quantity": 1}], customer, now=order_day)

        assert not confirmation.history_synced
        assert confirmation.warnings == ["history_not_updated"]
        assert (await services.store.get(confirmation.order_id)).order_number == confirmation.order_number

    async def test_cart_clear_failure_is_not_fatal(self, services, products, session_factory, customer, monkeypatch, order_day):
        await seed_cart(session_factory, "U1", [{"product_id": "P3", "quantity": 1}])

        async def broken_clear(user_id):
            raise OperationalError("DELETE FROM cart_items", {}, Exception("database is locked"))

        monkeypatch.setattr(services.carts, "clear_cart", broken_clear)

        confirmation = await services.checkout.checkout_user_cart("U1", customer, now=order_day)

        assert not confirmation.cart_cleared
        assert confirmation.warnings == ["cart_not_cleared"]


class TestCheckoutThenCancel:
    """Tests for the order lifecycle following a checkout"""

    async def test_cancel_syncs_history_and_restores_stock(self, services, products, customer, order_day, get_stock):
        confirmation = await services.checkout.checkout_items(
            [{"product_id": "P2", "quantity": 2}], customer, user_id="U1", now=order_day,
        )
        assert await get_stock("P2") == 1

        await services.store.cancel_by_customer(confirmation.order_id, "U1")

        assert await get_stock("P2") == 3
        history = await services.history.find_by_email(customer.email)
        assert history.entries[0].status == "cancelled"

        with pytest.raises(InvalidTransitionError):
            await services.store.cancel_by_customer(confirmation.order_id, "U1")
        assert await get_stock("P2") == 3
