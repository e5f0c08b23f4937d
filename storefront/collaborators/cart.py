"""
Cart Gateway

Read-only snapshot of a customer's cart plus the clear operation checkout
performs once the order is durable.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.collaborators.catalog import CatalogGateway
from storefront.database.models import Cart, CartItem, utcnow
from storefront.errors import NotFoundError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CartLine:
    """One cart line as captured when the item was added."""
    product_id: str
    product_name: str
    price: Decimal
    quantity: int
    image: Optional[str] = None
    slug: Optional[str] = None
    category: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    """
    Immutable view of a cart at checkout time.

    ``stored`` marks a snapshot of the user's persisted cart, the only kind
    checkout empties afterwards. Inline guest items are never stored.
    """
    user_id: Optional[str]
    lines: List[CartLine] = field(default_factory=list)
    stored: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def total_amount(self) -> Decimal:
        return sum((line.total for line in self.lines), Decimal("0"))

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self.lines)


class CartGateway:
    """Cart access for checkout."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession], catalog: Optional[CatalogGateway] = None):
        self.sessions = sessions
        self.catalog = catalog or CatalogGateway()

    async def get_cart(self, user_id: str) -> CartSnapshot:
        """Snapshot of the user's cart; a user without a cart has an empty one."""
        async with self.sessions() as session:
            cart = (
                await session.execute(select(Cart).where(Cart.user_id == user_id))
            ).scalar_one_or_none()
            if cart is None:
                return CartSnapshot(user_id=user_id)

            products = await self.catalog.get_products(session, (item.product_id for item in cart.items))
            lines = []
            for item in cart.items:
                product = products.get(item.product_id)
                lines.append(CartLine(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    price=item.price,
                    quantity=item.quantity,
                    image=item.product_image,
                    slug=item.product_slug,
                    category=product.category if product else None,
                ))
        return CartSnapshot(user_id=user_id, lines=lines, stored=True)

    async def clear_cart(self, user_id: str) -> None:
        """Empty the cart and zero its totals. The cart row itself stays."""
        async with self.sessions() as session:
            cart_id = (
                await session.execute(select(Cart.id).where(Cart.user_id == user_id))
            ).scalar_one_or_none()
            if cart_id is None:
                return
            await session.execute(delete(CartItem).where(CartItem.cart_id == cart_id))
            await session.execute(
                update(Cart)
                .where(Cart.id == cart_id)
                .values(total_amount=Decimal("0"), total_items=0, updated_at=utcnow())
            )
            await session.commit()
        logger.info("Cart cleared", user_id=user_id)

    async def snapshot_from_items(
        self,
        items: Iterable[Dict[str, Any]],
        user_id: Optional[str] = None,
    ) -> CartSnapshot:
        """
        Build a cart snapshot for guest checkout from inline
        ``{product_id, quantity}`` items, priced from the catalog.

        Raises:
            NotFoundError: If an item references an unknown product
        """
        items = list(items)
        async with self.sessions() as session:
            products = await self.catalog.get_products(session, (item["product_id"] for item in items))

        lines = []
        for item in items:
            product = products.get(item["product_id"])
            if product is None:
                raise NotFoundError("Product", item["product_id"])
            lines.append(CartLine(
                product_id=product.id,
                product_name=product.name,
                price=product.price,
                quantity=int(item["quantity"]),
                image=product.image,
                slug=product.slug,
                category=product.category,
            ))
        return CartSnapshot(user_id=user_id, lines=lines)
