"""
Catalog Gateway

Reads products and adjusts stock. Every stock change is a single
conditional UPDATE so concurrent callers can never drive ``amount`` below
zero or lose each other's writes.
"""

from typing import Dict, Iterable, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database.models import Product, utcnow

logger = structlog.get_logger(__name__)


class CatalogGateway:
    """Product lookups and atomic stock adjustments within a caller's session."""

    async def get_product(self, session: AsyncSession, product_id: str) -> Optional[Product]:
        result = await session.execute(select(Product).where(Product.id == product_id))
        return result.scalar_one_or_none()

    async def get_products(self, session: AsyncSession, product_ids: Iterable[str]) -> Dict[str, Product]:
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        result = await session.execute(select(Product).where(Product.id.in_(ids)))
        return {product.id: product for product in result.scalars()}

    async def adjust_stock(self, session: AsyncSession, product_id: str, delta: int) -> bool:
        """
        Add ``delta`` to the product's stock.

        Debits only apply while ``amount >= -delta`` at the moment of the
        write. Returns False when nothing was updated, either because the
        product does not exist or because a debit would go negative.
        """
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(amount=Product.amount + delta, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if delta < 0:
            stmt = stmt.where(Product.amount >= -delta)

        result = await session.execute(stmt)
        applied = result.rowcount == 1
        logger.debug("Stock adjusted", product_id=product_id, delta=delta, applied=applied)
        return applied
