"""
Integration Tests - Inventory Guard
"""
import asyncio
import uuid

import pytest
from sqlalchemy import delete

from storefront.database.models import Product
from storefront.errors import InsufficientStockError, NotFoundError
from storefront.inventory.guard import StockLine


class TestValidateAndReserve:
    """Tests for reservation"""

    async def test_reserve_debits_stock(self, services, products, get_stock):
        """Test every line is debited"""
        proof = await services.guard.validate_and_reserve([StockLine("P1", 2), StockLine("P3", 5)])

        assert await get_stock("P1") == 0
        assert await get_stock("P3") == 45
        assert {line.product_id for line in proof.lines} == {"P1", "P3"}

    async def test_insufficient_stock_reports_triple(self, services, products, get_stock):
        """Test P1 with 2 in stock rejects a request for 3 and stays at 2"""
        with pytest.raises(InsufficientStockError) as exc_info:
            await services.guard.validate_and_reserve([StockLine("P1", 3)])

        error = exc_info.value
        assert (error.product_id, error.requested, error.available) == ("P1", 3, 2)
        assert error.product_name == "Ceramic Mug"
        assert await get_stock("P1") == 2

    async def test_failed_line_rolls_back_earlier_lines(self, services, products, get_stock):
        """Test no partial debit survives a failed reservation"""
        with pytest.raises(InsufficientStockError):
            await services.guard.validate_and_reserve([StockLine("P1", 1), StockLine("P2", 5)])

        assert await get_stock("P1") == 2
        assert await get_stock("P2") == 3

    async def test_unknown_product(self, services, products, get_stock):
        with pytest.raises(NotFoundError) as exc_info:
            await services.guard.validate_and_reserve([StockLine("P3", 1), StockLine("P404", 1)])

        assert exc_info.value.key == "P404"
        assert await get_stock("P3") == 50

    async def test_lines_for_same_product_are_combined(self, services, products, get_stock):
        """Test two lines of one product are checked against their sum"""
        with pytest.raises(InsufficientStockError) as exc_info:
            await services.guard.validate_and_reserve([StockLine("P1", 1), StockLine("P1", 2)])

        assert exc_info.value.requested == 3
        assert await get_stock("P1") == 2

    async def test_non_positive_quantity_rejected(self, services, products):
        with pytest.raises(ValueError):
            await services.guard.validate_and_reserve([StockLine("P1", 0)])

    async def test_concurrent_reservations_never_oversell(self, services, products, get_stock):
        """Test two requests for 2 of P2 (3 in stock): exactly one wins"""
        results = await asyncio.gather(
            services.guard.validate_and_reserve([StockLine("P2", 2)]),
            services.guard.validate_and_reserve([StockLine("P2", 2)]),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientStockError)
        assert failures[0].available == 1
        assert await get_stock("P2") == 1


class TestReleaseAndRestock:
    """Tests for compensation and restock"""

    async def test_release_reservation_restores_stock(self, services, products, get_stock):
        proof = await services.guard.validate_and_reserve([StockLine("P2", 3)])

        await services.guard.release_reservation(proof)
        await services.guard.release_reservation(proof)

        assert proof.released
        assert await get_stock("P2") == 3

    async def test_committed_reservation_cannot_be_released(self, services, products):
        proof = await services.guard.validate_and_reserve([StockLine("P2", 1)])
        await services.guard.commit(proof)

        with pytest.raises(RuntimeError):
            await services.guard.release_reservation(proof)

    async def test_restock_skips_missing_products(self, services, products, session_factory, get_stock):
        """Test a vanished product is skipped, the rest is restocked"""
        async with session_factory() as session:
            await session.execute(delete(Product).where(Product.id == "P2"))
            await session.commit()

        async with session_factory() as session:
            skipped = await services.guard.restock(session, [StockLine("P2", 1), StockLine("P3", 4)])
            await session.commit()

        assert skipped == ["P2"]
        assert await get_stock("P3") == 54

    async def test_release_unknown_order(self, services, products):
        with pytest.raises(NotFoundError):
            await services.guard.release(uuid.uuid4())
