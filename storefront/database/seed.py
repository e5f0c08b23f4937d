"""
Development seeding for the catalog and cart tables.

Loads products and carts from a JSON document of the form::

    {
        "products": [{"id": "P001", "name": "...", "price": "120000", "amount": 5}],
        "carts": [{"user_id": "U1", "items": [{"product_id": "P001", "quantity": 2}]}]
    }
"""

import asyncio
import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.database.connection import close_database, create_tables, get_engine, get_session_factory, init_database
from storefront.database.models import Cart, CartItem, Product

logger = structlog.get_logger(__name__)


async def seed_products(
    sessions: async_sessionmaker[AsyncSession],
    records: Iterable[Dict[str, Any]],
) -> List[Product]:
    """Insert or overwrite products keyed by id."""
    products = []
    async with sessions() as session:
        for row in records:
            product = await session.get(Product, row["id"])
            if product is None:
                product = Product(id=row["id"])
                session.add(product)
            product.name = row.get("name", row["id"])
            product.price = Decimal(str(row["price"]))
            product.amount = int(row.get("amount", 0))
            product.image = row.get("image")
            product.slug = row.get("slug")
            product.category = row.get("category")
            products.append(product)
        await session.commit()
    logger.info("Seeded products", count=len(products))
    return products


async def seed_cart(
    sessions: async_sessionmaker[AsyncSession],
    user_id: str,
    items: Iterable[Dict[str, Any]],
) -> Cart:
    """
    Replace the cart of ``user_id`` with the given ``{product_id, quantity}``
    lines, capturing name, price and display fields from the catalog the way
    the cart service does when an item is added.
    """
    async with sessions() as session:
        cart = (await session.execute(select(Cart).where(Cart.user_id == user_id))).scalar_one_or_none()
        if cart is None:
            cart = Cart(user_id=user_id)
            session.add(cart)
            await session.flush()
        else:
            await session.execute(delete(CartItem).where(CartItem.cart_id == cart.id))

        total_amount = Decimal("0")
        total_items = 0
        for position, line in enumerate(items):
            product = await session.get(Product, line["product_id"])
            if product is None:
                raise ValueError(f"Unknown product in cart seed: {line['product_id']}")
            quantity = int(line["quantity"])
            price = Decimal(str(line.get("price", product.price)))
            session.add(CartItem(
                cart_id=cart.id,
                position=position,
                product_id=product.id,
                product_name=product.name,
                product_image=product.image,
                product_slug=product.slug,
                price=price,
                quantity=quantity,
                total=price * quantity,
            ))
            total_amount += price * quantity
            total_items += quantity

        cart.total_amount = total_amount
        cart.total_items = total_items
        await session.commit()
        await session.refresh(cart, attribute_names=["items"])
    logger.info("Seeded cart", user_id=user_id, total_items=total_items)
    return cart


async def seed_from_file(sessions: async_sessionmaker[AsyncSession], path: Path) -> None:
    """Seed products first, then carts, from a JSON document."""
    document = json.loads(path.read_text(encoding="utf-8"))
    await seed_products(sessions, document.get("products", []))
    for cart in document.get("carts", []):
        await seed_cart(sessions, cart["user_id"], cart.get("items", []))


async def main(path: Optional[str] = None):
    logger.info("Starting database seeding...")
    await init_database()

    try:
        await create_tables(get_engine())
        await seed_from_file(get_session_factory(), Path(path or "seed.json"))
        logger.info("Database seeding completed successfully!")
    except Exception as e:
        logger.error("Seeding failed", error=str(e))
        raise
    finally:
        await close_database()


def run():
    """Console entry point: seed from the JSON file given as first argument."""
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))


if __name__ == "__main__":
    run()
