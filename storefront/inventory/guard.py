"""
Inventory Guard

Validates requested quantities against stock and performs the debit and
credit. Reservation is validate-and-debit fused into one transaction: each
line is a conditional decrement, and if any line fails the whole
transaction rolls back so no partial debit survives.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Protocol, Tuple
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.collaborators.catalog import CatalogGateway
from storefront.database.models import Order, OrderItem, Product, utcnow
from storefront.errors import InsufficientStockError, NotFoundError

logger = structlog.get_logger(__name__)


class StockItem(Protocol):
    product_id: str
    quantity: int


@dataclass(frozen=True)
class StockLine:
    product_id: str
    quantity: int


@dataclass
class ReservationProof:
    """Evidence that stock for ``lines`` has been debited."""
    lines: Tuple[StockLine, ...]
    reservation_id: uuid.UUID = field(default_factory=uuid.uuid4)
    reserved_at: datetime = field(default_factory=utcnow)
    committed: bool = False
    released: bool = False


def merge_lines(items: Iterable[StockItem]) -> Tuple[StockLine, ...]:
    """
    Combine lines for the same product, ordered by product id.

    The fixed order keeps row locks acquired in the same sequence across
    concurrent reservations.
    """
    totals = {}
    for item in items:
        if item.quantity <= 0:
            raise ValueError(f"Quantity must be positive for product {item.product_id}")
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return tuple(StockLine(pid, qty) for pid, qty in sorted(totals.items()))


class InventoryGuard:
    """
    Stock reservation and restoration.

    Example:
        guard = InventoryGuard(session_factory)
        proof = await guard.validate_and_reserve([StockLine("P1", 2)])
        ...
        await guard.commit(proof)
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession], catalog: CatalogGateway = None):
        self.sessions = sessions
        self.catalog = catalog or CatalogGateway()

    async def validate_and_reserve(self, items: Iterable[StockItem]) -> ReservationProof:
        """
        Debit stock for every line or for none.

        Raises:
            NotFoundError: A line references a product that does not exist
            InsufficientStockError: A line asks for more than is on hand
        """
        lines = merge_lines(items)

        async with self.sessions() as session:
            for line in lines:
                applied = await self.catalog.adjust_stock(session, line.product_id, -line.quantity)
                if applied:
                    continue

                # Plain columns: rollback expires every instance in the session
                stock = (
                    await session.execute(
                        select(Product.amount, Product.name).where(Product.id == line.product_id)
                    )
                ).one_or_none()
                await session.rollback()

                if stock is None:
                    logger.info("Reservation rejected, unknown product", product_id=line.product_id)
                    raise NotFoundError("Product", line.product_id)

                available, name = stock
                logger.info(
                    "Reservation rejected, insufficient stock",
                    product_id=line.product_id,
                    requested=line.quantity,
                    available=available,
                )
                raise InsufficientStockError(
                    product_id=line.product_id,
                    requested=line.quantity,
                    available=available,
                    product_name=name,
                )

            await session.commit()

        proof = ReservationProof(lines=lines)
        logger.info(
            "Stock reserved",
            reservation_id=str(proof.reservation_id),
            products=[line.product_id for line in lines],
        )
        return proof

    async def commit(self, proof: ReservationProof) -> None:
        """
        Finalize a reservation once its order is durable.

        The debit already happened in ``validate_and_reserve``; committing
        only closes the compensation window.
        """
        if proof.released:
            raise RuntimeError(f"Reservation {proof.reservation_id} was already released")
        proof.committed = True

    async def release_reservation(self, proof: ReservationProof) -> List[str]:
        """
        Compensate a reservation that did not lead to an order.

        Safe to call more than once. Returns product ids that could not be
        restocked.
        """
        if proof.committed:
            raise RuntimeError(f"Reservation {proof.reservation_id} is committed, release the order instead")
        if proof.released:
            return []

        async with self.sessions() as session:
            skipped = await self.restock(session, proof.lines)
            await session.commit()

        proof.released = True
        logger.warning(
            "Reservation released",
            reservation_id=str(proof.reservation_id),
            products=[line.product_id for line in proof.lines],
        )
        return skipped

    async def release(self, order_id: uuid.UUID) -> List[str]:
        """
        Restock every line of an existing order in its own transaction.

        Returns the product ids skipped because they no longer exist.

        Raises:
            NotFoundError: If the order does not exist
        """
        async with self.sessions() as session:
            exists = (await session.execute(select(Order.id).where(Order.id == order_id))).scalar_one_or_none()
            if exists is None:
                raise NotFoundError("Order", order_id)
            items = (
                await session.execute(select(OrderItem).where(OrderItem.order_id == order_id))
            ).scalars().all()
            skipped = await self.restock(session, items)
            await session.commit()
        return skipped

    async def restock(self, session: AsyncSession, items: Iterable[StockItem]) -> List[str]:
        """
        Credit each line's quantity back inside the caller's transaction.

        A product that no longer exists is logged and skipped; it never
        aborts the caller. Returns the skipped product ids.
        """
        skipped = []
        for line in merge_lines(items):
            if not await self.catalog.adjust_stock(session, line.product_id, line.quantity):
                logger.warning(
                    "Restock skipped, product no longer exists",
                    product_id=line.product_id,
                    quantity=line.quantity,
                )
                skipped.append(line.product_id)
        return skipped
