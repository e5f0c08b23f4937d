"""
Order History Projection

Denormalized per-customer view of past orders used for "my orders" and
"orders by email" lookups. Orders stay the source of truth: records here
can be duplicated by guest/logged-in checkouts or racing appends, and are
merged by ``reconcile`` whenever a lookup finds more than one.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence
import uuid

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.collaborators.cart import CartLine
from storefront.database.models import Order, OrderHistoryEntry, OrderHistoryRecord, OrderStatus, utcnow
from storefront.errors import NotFoundError, ProjectionWriteFailedError

logger = structlog.get_logger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class CustomerKey:
    """Identity an order is filed under."""
    email: str
    user_id: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class OrderSummary:
    """Lightweight copy of an order as shown in the customer's history."""
    order_id: uuid.UUID
    order_number: str
    order_date: datetime
    status: str
    total_amount: Decimal
    shipping_address: Dict[str, Any]
    payment_method: str
    notes: Optional[str] = None
    products: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_order(cls, order: Order, lines: Iterable[CartLine]) -> "OrderSummary":
        """Summary of a freshly created order with display fields from its cart lines."""
        products = [
            {
                "product_id": line.product_id,
                "product_name": line.product_name,
                "product_image": line.image,
                "product_slug": line.slug,
                "category": line.category,
                "quantity": line.quantity,
                "unit_price": str(line.price),
                "total_price": str(line.total),
            }
            for line in lines
        ]
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            order_date=order.created_at,
            status=OrderStatus(order.status).value,
            total_amount=order.total_amount,
            shipping_address=dict(order.shipping_address),
            payment_method=order.payment_method,
            notes=order.customer_note,
            products=products,
        )


@dataclass
class CustomerOrders:
    """A customer's reconciled history, orders newest-first."""
    email: str
    user_id: Optional[str]
    name: Optional[str]
    phone: Optional[str]
    orders: List[OrderHistoryEntry]
    records_merged: int = 1

    @property
    def total_orders(self) -> int:
        return len(self.orders)


def _survivor_order(record: OrderHistoryRecord):
    return (record.created_at, str(record.id))


class OrderHistoryProjection:
    """Append, look up and reconcile per-customer order history records."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self.sessions = sessions

    async def append(self, key: CustomerKey, summary: OrderSummary) -> OrderHistoryRecord:
        """
        File ``summary`` under the customer's record, creating it on first
        order. An existing record without a ``user_id`` gets the caller's;
        an existing ``user_id`` is never overwritten. Appending the same
        order twice is a no-op.

        Raises:
            ProjectionWriteFailedError: If the record could not be written
        """
        email = normalize_email(key.email)
        try:
            async with self.sessions() as session:
                record = (
                    await session.execute(
                        select(OrderHistoryRecord)
                        .where(OrderHistoryRecord.user_email == email)
                        .order_by(OrderHistoryRecord.created_at, OrderHistoryRecord.id)
                        .limit(1)
                    )
                ).scalar_one_or_none()

                if record is None:
                    record = OrderHistoryRecord(
                        id=uuid.uuid4(),
                        user_id=key.user_id,
                        user_email=email,
                        user_name=key.name,
                        user_phone=key.phone,
                        created_at=utcnow(),
                    )
                    session.add(record)
                    await session.flush()
                    logger.info("Order history record created", user_email=email, user_id=key.user_id)
                elif key.user_id and not record.user_id:
                    record.user_id = key.user_id
                    logger.info("Order history record linked to user", user_email=email, user_id=key.user_id)

                already_filed = (
                    await session.execute(
                        select(OrderHistoryEntry.id).where(
                            OrderHistoryEntry.record_id == record.id,
                            OrderHistoryEntry.order_id == summary.order_id,
                        )
                    )
                ).first()
                if already_filed is None:
                    session.add(self._entry(record.id, summary))
                record.updated_at = utcnow()
                await session.commit()
                await session.refresh(record, attribute_names=["entries"])
        except SQLAlchemyError as e:
            raise ProjectionWriteFailedError(email, str(e)) from e

        logger.info(
            "Order history appended",
            user_email=email,
            order_number=summary.order_number,
            total_orders=len(record.entries),
        )
        return record

    @staticmethod
    def _entry(record_id: uuid.UUID, summary: OrderSummary) -> OrderHistoryEntry:
        return OrderHistoryEntry(
            record_id=record_id,
            order_id=summary.order_id,
            order_number=summary.order_number,
            order_date=summary.order_date,
            status=summary.status,
            total_amount=summary.total_amount,
            shipping_address=summary.shipping_address,
            payment_method=summary.payment_method,
            notes=summary.notes,
            products=summary.products,
        )

    async def find_by_email(self, email: str) -> Optional[OrderHistoryRecord]:
        """Oldest record filed under ``email``, if any."""
        async with self.sessions() as session:
            return (
                await session.execute(
                    select(OrderHistoryRecord)
                    .where(OrderHistoryRecord.user_email == normalize_email(email))
                    .order_by(OrderHistoryRecord.created_at, OrderHistoryRecord.id)
                    .limit(1)
                )
            ).scalar_one_or_none()

    async def find_by_user_id_or_email(
        self,
        user_id: Optional[str],
        email: Optional[str],
    ) -> List[OrderHistoryRecord]:
        """Every record matching either identity, oldest first."""
        conditions = []
        if user_id:
            conditions.append(OrderHistoryRecord.user_id == user_id)
        if email:
            conditions.append(OrderHistoryRecord.user_email == normalize_email(email))
        if not conditions:
            return []

        async with self.sessions() as session:
            result = await session.execute(
                select(OrderHistoryRecord)
                .where(or_(*conditions))
                .order_by(OrderHistoryRecord.created_at, OrderHistoryRecord.id)
            )
            return list(result.scalars().all())

    async def reconcile(self, records: Sequence[OrderHistoryRecord]) -> OrderHistoryRecord:
        """
        Merge records of one customer into the oldest.

        The survivor ends up with the union of all entries, deduplicated by
        order id, and keeps or backfills ``user_id``, name and phone. The
        other records are deleted. Reconciling an already merged set
        returns the survivor untouched.

        Raises:
            ValueError: If ``records`` is empty
            NotFoundError: If none of the records still exist
        """
        if not records:
            raise ValueError("Nothing to reconcile")

        ids = [record.id for record in records]
        async with self.sessions() as session:
            current = (
                await session.execute(
                    select(OrderHistoryRecord)
                    .where(OrderHistoryRecord.id.in_(ids))
                    .execution_options(populate_existing=True)
                )
            ).scalars().all()
            if not current:
                raise NotFoundError("OrderHistoryRecord", ids[0])

            current = sorted(current, key=_survivor_order)
            survivor, others = current[0], current[1:]

            seen = set()
            duplicate_entries = []
            for record in current:
                for entry in record.entries:
                    if entry.order_id in seen:
                        duplicate_entries.append(entry.id)
                    else:
                        seen.add(entry.order_id)

            if not others and not duplicate_entries:
                return survivor

            for other in others:
                survivor.user_id = survivor.user_id or other.user_id
                survivor.user_name = survivor.user_name or other.user_name
                survivor.user_phone = survivor.user_phone or other.user_phone

            other_ids = [other.id for other in others]
            if duplicate_entries:
                await session.execute(
                    delete(OrderHistoryEntry)
                    .where(OrderHistoryEntry.id.in_(duplicate_entries))
                    .execution_options(synchronize_session=False)
                )
            if other_ids:
                await session.execute(
                    update(OrderHistoryEntry)
                    .where(OrderHistoryEntry.record_id.in_(other_ids))
                    .values(record_id=survivor.id)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    delete(OrderHistoryRecord)
                    .where(OrderHistoryRecord.id.in_(other_ids))
                    .execution_options(synchronize_session=False)
                )
            survivor.updated_at = utcnow()
            await session.commit()

            survivor = (
                await session.execute(
                    select(OrderHistoryRecord)
                    .where(OrderHistoryRecord.id == survivor.id)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one()

        logger.info(
            "Order history reconciled",
            user_email=survivor.user_email,
            merged_records=len(other_ids),
            dropped_duplicates=len(duplicate_entries),
            total_orders=len(survivor.entries),
        )
        return survivor

    async def orders_for_customer(self, user_id: Optional[str], email: Optional[str]) -> CustomerOrders:
        """
        The customer's orders newest-first, reconciling duplicate records
        found along the way.

        Raises:
            NotFoundError: If no record exists for either identity
        """
        records = await self.find_by_user_id_or_email(user_id, email)
        if not records:
            raise NotFoundError("OrderHistory", email or user_id)

        merged = len(records)
        record = records[0] if merged == 1 else await self.reconcile(records)

        orders = sorted(record.entries, key=lambda entry: entry.order_date, reverse=True)
        return CustomerOrders(
            email=record.user_email,
            user_id=record.user_id,
            name=record.user_name,
            phone=record.user_phone,
            orders=orders,
            records_merged=merged,
        )

    async def sync_status(self, order_id: uuid.UUID, status: OrderStatus) -> int:
        """
        Copy an order's status into every history entry for it.

        Raises:
            ProjectionWriteFailedError: If the entries could not be updated
        """
        status = OrderStatus(status)
        try:
            async with self.sessions() as session:
                result = await session.execute(
                    update(OrderHistoryEntry)
                    .where(OrderHistoryEntry.order_id == order_id)
                    .values(status=status.value)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise ProjectionWriteFailedError(str(order_id), str(e)) from e
        return result.rowcount

    async def on_status_change(self, order: Order, previous_status: OrderStatus) -> None:
        """Status listener for ``OrderStore``."""
        updated = await self.sync_status(order.id, order.status)
        logger.debug(
            "Order history status synced",
            order_number=order.order_number,
            status=OrderStatus(order.status).value,
            entries=updated,
        )
