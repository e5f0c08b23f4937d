"""
Checkout Orchestrator

Turns a cart into a durable order. The steps span independently committed
entities (products, orders, carts, order history), so the flow is a saga:

    1. reject an empty cart
    2. validate customer information
    3. reserve stock (conditional debit of every line, all or nothing)
    4-5. allocate an order number and persist the pending order
         (on failure the reservation from step 3 is released)
    6. commit the reservation
    7. clear the cart (non-fatal)
    8. append to the customer's order history (non-fatal)
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
import uuid

import structlog
from sqlalchemy.exc import SQLAlchemyError

from storefront.checkout.validation import CustomerInfo, validate_customer
from storefront.collaborators.cart import CartGateway, CartSnapshot
from storefront.config.settings import CheckoutSettings
from storefront.database.models import utcnow
from storefront.errors import EmptyCartError, ProjectionWriteFailedError
from storefront.history.projection import CustomerKey, OrderHistoryProjection, OrderSummary
from storefront.inventory.guard import InventoryGuard
from storefront.orders.store import OrderStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OrderConfirmation:
    """What the customer gets back from a successful checkout."""
    order_id: uuid.UUID
    order_number: str
    total_amount: Decimal
    item_count: int
    cart_cleared: bool = True
    history_synced: bool = True
    warnings: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


class CheckoutOrchestrator:
    """Single entry point for checkout."""

    def __init__(
        self,
        carts: CartGateway,
        guard: InventoryGuard,
        store: OrderStore,
        history: OrderHistoryProjection,
        settings: Optional[CheckoutSettings] = None,
    ):
        self.carts = carts
        self.guard = guard
        self.store = store
        self.history = history
        self.settings = settings or CheckoutSettings()

    async def checkout_user_cart(
        self,
        user_id: str,
        customer: CustomerInfo,
        account_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OrderConfirmation:
        """Check out the stored cart of a logged-in user."""
        cart = await self.carts.get_cart(user_id)
        return await self.checkout(cart, customer, user_id=user_id, account_email=account_email, now=now)

    async def checkout_items(
        self,
        items: Iterable[Dict[str, Any]],
        customer: CustomerInfo,
        user_id: Optional[str] = None,
        account_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OrderConfirmation:
        """Check out inline ``{product_id, quantity}`` items priced from the catalog."""
        items = list(items)
        if not items:
            raise EmptyCartError(user_id)
        # Customer problems are reported before unknown products
        customer = validate_customer(customer, self.settings)
        cart = await self.carts.snapshot_from_items(items, user_id=user_id)
        return await self.checkout(cart, customer, user_id=user_id, account_email=account_email, now=now)

    async def checkout(
        self,
        cart: CartSnapshot,
        customer: CustomerInfo,
        user_id: Optional[str] = None,
        account_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OrderConfirmation:
        """
        Convert ``cart`` into a pending order.

        ``account_email`` files the order history under the logged-in
        account rather than the email typed on the form.

        Raises:
            EmptyCartError: The cart has no lines
            InvalidCustomerError: Customer information is missing or malformed
            NotFoundError: A line references an unknown product
            InsufficientStockError: A line asks for more than is in stock
            DuplicateOrderNumberError: No unique order number could be allocated
        """
        now = now or utcnow()
        log = logger.bind(user_id=user_id)

        if cart.is_empty:
            raise EmptyCartError(user_id)

        customer = validate_customer(customer, self.settings)

        proof = await self.guard.validate_and_reserve(cart.lines)

        try:
            order = await self.store.create(
                cart,
                shipping_address=customer.shipping_address(),
                payment_method=customer.payment_method,
                customer_note=customer.notes,
                user_id=user_id,
                now=now,
            )
        except Exception as e:
            log.warning("Order persistence failed, releasing reservation", error=str(e), error_type=type(e).__name__)
            try:
                await self.guard.release_reservation(proof)
            except SQLAlchemyError as release_error:
                log.error(
                    "Reservation release failed, stock leaked",
                    reservation_id=str(proof.reservation_id),
                    error=str(release_error),
                )
            raise

        await self.guard.commit(proof)
        log = log.bind(order_number=order.order_number)

        warnings = []
        cart_cleared = True
        if cart.stored and cart.user_id:
            try:
                await self.carts.clear_cart(cart.user_id)
            except SQLAlchemyError as e:
                cart_cleared = False
                warnings.append("cart_not_cleared")
                log.warning("Cart clear failed after checkout", error=str(e))

        history_synced = True
        key = CustomerKey(
            email=account_email or customer.email,
            user_id=user_id,
            name=customer.name,
            phone=customer.phone,
        )
        try:
            await self.history.append(key, OrderSummary.from_order(order, cart.lines))
        except ProjectionWriteFailedError as e:
            history_synced = False
            warnings.append("history_not_updated")
            log.warning("Order history append failed", error=e.reason)

        log.info(
            "Checkout completed",
            total_amount=str(order.total_amount),
            lines=len(cart.lines),
            degraded=bool(warnings),
        )
        return OrderConfirmation(
            order_id=order.id,
            order_number=order.order_number,
            total_amount=order.total_amount,
            item_count=len(cart.lines),
            cart_cleared=cart_cleared,
            history_synced=history_synced,
            warnings=warnings,
        )
