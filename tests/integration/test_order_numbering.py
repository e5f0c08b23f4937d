"""
Integration Tests - Order Number Generator
"""
from datetime import datetime
from decimal import Decimal

from storefront.database.models import Order
from storefront.orders.numbering import OrderNumberGenerator


async def insert_orders(session_factory, *order_numbers):
    async with session_factory() as session:
        for number in order_numbers:
            session.add(Order(
                order_number=number,
                subtotal=Decimal("10"),
                total_amount=Decimal("10"),
                shipping_address={"street": "1 Test Street"},
                payment_method="cash_on_delivery",
            ))
        await session.commit()


class TestNextOrderNumber:
    """Tests for next_order_number"""

    async def test_first_order_of_the_day(self, session_factory, order_day):
        """Test the first number of 2025-01-15 is GP202501150001"""
        generator = OrderNumberGenerator()

        async with session_factory() as session:
            assert await generator.next_order_number(session, order_day) == "GP202501150001"

    async def test_increments_after_highest(self, session_factory, order_day):
        await insert_orders(session_factory, "GP202501150001", "GP202501150007", "GP202501150003")
        generator = OrderNumberGenerator()

        async with session_factory() as session:
            assert await generator.next_order_number(session, order_day) == "GP202501150008"

    async def test_other_days_ignored(self, session_factory, order_day):
        """Test sequences restart every day"""
        await insert_orders(session_factory, "GP202501140042", "GP202501160005")
        generator = OrderNumberGenerator()

        async with session_factory() as session:
            assert await generator.next_order_number(session, order_day) == "GP202501150001"

    async def test_sequence_widens_past_9999(self, session_factory, order_day):
        """Test the sequence keeps growing instead of colliding"""
        await insert_orders(session_factory, "GP202501159998", "GP202501159999")
        generator = OrderNumberGenerator()

        async with session_factory() as session:
            assert await generator.next_order_number(session, order_day) == "GP2025011510000"

        await insert_orders(session_factory, "GP2025011510000")

        async with session_factory() as session:
            assert await generator.next_order_number(session, order_day) == "GP2025011510001"

    async def test_prefix_is_matched_literally(self, session_factory):
        """Test LIKE wildcards in a prefix do not match other numbers"""
        await insert_orders(session_factory, "AB202501150009")
        generator = OrderNumberGenerator(prefix="A_")

        async with session_factory() as session:
            assert await generator.next_order_number(session, datetime(2025, 1, 15)) == "A_202501150001"
