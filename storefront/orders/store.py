"""
Order Record Store

Owns the canonical Order entity: creation at checkout, the status
lifecycle with its stock side effects, and the owner-scoped queries.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union
import uuid

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from storefront.collaborators.cart import CartSnapshot
from storefront.config.settings import CheckoutSettings
from storefront.database.models import Order, OrderItem, OrderStatus, PaymentStatus, utcnow
from storefront.errors import DuplicateOrderNumberError, FulfillmentError, NotFoundError
from storefront.inventory.guard import InventoryGuard
from storefront.orders.numbering import OrderNumberGenerator
from storefront.orders.status import Actor, plan_transition

logger = structlog.get_logger(__name__)

OrderRef = Union[str, uuid.UUID]

# Re-evaluations of a status change that lost an optimistic version race
MAX_TRANSITION_ATTEMPTS = 3


@dataclass
class StatusChange:
    """Outcome of a status transition request."""
    order: Order
    previous_status: OrderStatus
    changed: bool
    restock_skipped: List[str] = field(default_factory=list)


@dataclass
class OrderPage:
    items: List[Order]
    total_count: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total_count + self.limit - 1) // self.limit if self.limit else 0


def parse_order_id(order_ref: OrderRef) -> Optional[uuid.UUID]:
    if isinstance(order_ref, uuid.UUID):
        return order_ref
    try:
        return uuid.UUID(str(order_ref))
    except ValueError:
        return None


def product_sku(product_id: str, slug: Optional[str]) -> str:
    return slug or f"SKU-{product_id}"


class OrderStore:
    """
    Canonical order persistence and status lifecycle.

    ``status_listeners`` are awaited with ``(order, previous_status)`` after
    a transition commits. Listener failures are logged and never undo the
    transition.
    """

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        guard: InventoryGuard,
        settings: Optional[CheckoutSettings] = None,
        numbers: Optional[OrderNumberGenerator] = None,
    ):
        self.sessions = sessions
        self.guard = guard
        self.settings = settings or CheckoutSettings()
        self.numbers = numbers or OrderNumberGenerator(
            prefix=self.settings.order_number_prefix,
            width=self.settings.sequence_width,
        )
        self.status_listeners = []

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def _build_order(
        self,
        order_number: str,
        cart: CartSnapshot,
        shipping_address: Dict[str, Any],
        payment_method: str,
        customer_note: Optional[str],
        user_id: Optional[str],
        now: datetime,
    ) -> Order:
        items = [
            OrderItem(
                position=position,
                product_id=line.product_id,
                product_name=line.product_name,
                product_sku=product_sku(line.product_id, line.slug),
                quantity=line.quantity,
                unit_price=line.price,
                line_total=line.total,
            )
            for position, line in enumerate(cart.lines)
        ]
        subtotal = cart.total_amount
        tax_amount = Decimal("0")
        shipping_amount = Decimal("0")

        return Order(
            id=uuid.uuid4(),
            order_number=order_number,
            user_id=user_id,
            status=OrderStatus.PENDING,
            subtotal=subtotal,
            discount_amount=Decimal("0"),
            tax_amount=tax_amount,
            shipping_amount=shipping_amount,
            total_amount=subtotal + tax_amount + shipping_amount,
            currency=self.settings.currency,
            shipping_address=dict(shipping_address),
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            customer_note=customer_note,
            created_at=now,
            updated_at=now,
            items=items,
        )

    async def create(
        self,
        cart: CartSnapshot,
        shipping_address: Dict[str, Any],
        payment_method: str,
        customer_note: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Persist a pending order snapshotted from ``cart``.

        The order number is allocated optimistically and the insert is
        retried with a fresh number when it collides with a concurrent
        checkout.

        Raises:
            DuplicateOrderNumberError: If every attempt collided
        """
        now = now or utcnow()
        attempts = self.settings.number_retries
        order_number = None

        for attempt in range(1, attempts + 1):
            async with self.sessions() as session:
                order_number = await self.numbers.next_order_number(session, now)
                order = self._build_order(
                    order_number, cart, shipping_address, payment_method, customer_note, user_id, now
                )
                session.add(order)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    if not await self._number_taken(order_number):
                        raise
                    logger.warning(
                        "Order number collision, retrying",
                        order_number=order_number,
                        attempt=attempt,
                    )
                    continue

            logger.info(
                "Order created",
                order_id=str(order.id),
                order_number=order.order_number,
                user_id=user_id,
                total_amount=str(order.total_amount),
            )
            return order

        raise DuplicateOrderNumberError(order_number, attempts)

    async def _number_taken(self, order_number: str) -> bool:
        async with self.sessions() as session:
            result = await session.execute(select(Order.id).where(Order.order_number == order_number))
            return result.first() is not None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def _load(self, session: AsyncSession, order_ref: OrderRef, user_id: Optional[str] = None) -> Order:
        """Resolve an order by id, falling back to its order number."""
        order_id = parse_order_id(order_ref)
        if order_id is not None:
            stmt = select(Order).where(Order.id == order_id)
        else:
            stmt = select(Order).where(Order.order_number == str(order_ref))
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)

        order = (await session.execute(stmt.execution_options(populate_existing=True))).scalar_one_or_none()
        if order is None:
            # Non-owners get the same answer as a missing order
            raise NotFoundError("Order", order_ref)
        return order

    async def get(self, order_ref: OrderRef, user_id: Optional[str] = None) -> Order:
        """
        Fetch an order by id or order number.

        When ``user_id`` is given the lookup is scoped to that owner.

        Raises:
            NotFoundError: If absent or owned by someone else
        """
        async with self.sessions() as session:
            return await self._load(session, order_ref, user_id)

    async def get_by_number(self, order_number: str) -> Order:
        async with self.sessions() as session:
            order = (
                await session.execute(select(Order).where(Order.order_number == order_number))
            ).scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order", order_number)
        return order

    async def list(
        self,
        status: Optional[OrderStatus] = None,
        user_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
    ) -> OrderPage:
        """List orders newest-first with filters and pagination."""
        page = max(page, 1)
        limit = max(limit, 1)

        filters = []
        if status is not None:
            filters.append(Order.status == OrderStatus(status))
        if user_id is not None:
            filters.append(Order.user_id == user_id)
        if date_from is not None:
            filters.append(Order.created_at >= date_from)
        if date_to is not None:
            filters.append(Order.created_at <= date_to)

        async with self.sessions() as session:
            total_count = (
                await session.execute(select(func.count(Order.id)).where(*filters))
            ).scalar_one()
            items = (
                await session.execute(
                    select(Order)
                    .where(*filters)
                    .order_by(Order.created_at.desc(), Order.order_number.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).scalars().all()

        return OrderPage(items=list(items), total_count=total_count, page=page, limit=limit)

    # -------------------------------------------------------------------------
    # Status lifecycle
    # -------------------------------------------------------------------------

    async def update_status(
        self,
        order_ref: OrderRef,
        status: OrderStatus,
        tracking: Optional[Dict[str, Any]] = None,
        admin_note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StatusChange:
        """
        Admin-driven transition from any non-terminal state.

        Raises:
            NotFoundError: If the order does not exist
            InvalidTransitionError: If the order is terminal or the move goes backwards
        """
        return await self._transition(
            order_ref, OrderStatus(status), Actor.ADMIN,
            tracking=tracking, admin_note=admin_note, now=now,
        )

    async def cancel_by_customer(self, order_ref: OrderRef, user_id: str, now: Optional[datetime] = None) -> StatusChange:
        """
        Customer cancel, permitted only while the order is pending.

        Raises:
            NotFoundError: If absent or not owned by ``user_id``
            InvalidTransitionError: If the order is no longer pending
        """
        return await self._transition(order_ref, OrderStatus.CANCELLED, Actor.CUSTOMER, user_id=user_id, now=now)

    async def _transition(
        self,
        order_ref: OrderRef,
        requested: OrderStatus,
        actor: Actor,
        user_id: Optional[str] = None,
        tracking: Optional[Dict[str, Any]] = None,
        admin_note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StatusChange:
        for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
            async with self.sessions() as session:
                order = await self._load(session, order_ref, user_id)
                plan = plan_transition(order.status, requested, actor)
                previous = order.status

                if not plan.changed and tracking is None and admin_note is None:
                    return StatusChange(order=order, previous_status=previous, changed=False)

                skipped = []
                if plan.changed:
                    self._apply(order, requested, now or utcnow())
                    if plan.restock:
                        skipped = await self.guard.restock(session, order.items)
                if tracking is not None:
                    order.tracking = dict(tracking)
                if admin_note is not None:
                    order.admin_note = admin_note

                try:
                    await session.commit()
                except StaleDataError:
                    await session.rollback()
                    logger.warning(
                        "Concurrent order update, re-evaluating",
                        order_ref=str(order_ref),
                        requested=requested.value,
                        attempt=attempt,
                    )
                    continue

            if skipped:
                logger.warning(
                    "Order transition completed with restock skipped",
                    order_number=order.order_number,
                    skipped=skipped,
                )
            if plan.changed:
                logger.info(
                    "Order status changed",
                    order_number=order.order_number,
                    previous=previous.value,
                    status=requested.value,
                    actor=actor.value,
                )
                await self._notify(order, previous)

            return StatusChange(order=order, previous_status=previous, changed=plan.changed, restock_skipped=skipped)

        raise RuntimeError(f"Order {order_ref} kept changing concurrently, gave up after {MAX_TRANSITION_ATTEMPTS} attempts")

    @staticmethod
    def _apply(order: Order, status: OrderStatus, now: datetime) -> None:
        order.status = status
        order.updated_at = now
        if status == OrderStatus.SHIPPED:
            order.shipped_at = now
        elif status == OrderStatus.DELIVERED:
            order.delivered_at = now
        elif status == OrderStatus.CANCELLED:
            order.cancelled_at = now
        elif status == OrderStatus.REFUNDED:
            order.payment_status = PaymentStatus.REFUNDED

    async def _notify(self, order: Order, previous: OrderStatus) -> None:
        for listener in self.status_listeners:
            try:
                await listener(order, previous)
            except (FulfillmentError, SQLAlchemyError) as e:
                logger.warning(
                    "Status listener failed",
                    order_number=order.order_number,
                    error=str(e),
                    error_type=type(e).__name__,
                )
