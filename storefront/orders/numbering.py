"""
Order Number Generator

Produces date-scoped, human-readable order numbers such as
``GP202501150007``: prefix, ``YYYYMMDD``, then a zero-padded daily
sequence. The sequence is at least ``width`` digits and widens once it
outgrows them (``GP2025011510000``) instead of wrapping.

The "highest number today" read is advisory. Uniqueness is enforced by the
unique constraint on ``orders.order_number``; the store retries with a fresh
number when an insert collides.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database.models import Order


class OrderNumberGenerator:
    """Formats and derives order numbers for a given prefix and width."""

    def __init__(self, prefix: str = "GP", width: int = 4):
        if width < 1:
            raise ValueError("Sequence width must be at least 1")
        self.prefix = prefix
        self.width = width

    def day_prefix(self, now: datetime) -> str:
        return f"{self.prefix}{now:%Y%m%d}"

    def format(self, now: datetime, sequence: int) -> str:
        if sequence < 1:
            raise ValueError("Sequence starts at 1")
        return f"{self.day_prefix(now)}{str(sequence).zfill(self.width)}"

    def parse_sequence(self, order_number: str, now: datetime) -> Optional[int]:
        """Trailing sequence of a number issued on ``now``'s day, else None."""
        day_prefix = self.day_prefix(now)
        if not order_number.startswith(day_prefix):
            return None
        tail = order_number[len(day_prefix):]
        if not tail.isdigit():
            return None
        return int(tail)

    async def last_sequence(self, session: AsyncSession, now: datetime) -> int:
        """
        Highest sequence issued on ``now``'s day, 0 if none.

        Numbers are compared by length first so a widened sequence
        (``...10000``) sorts after ``...9999``.
        """
        day_prefix = self.day_prefix(now)
        result = await session.execute(
            select(Order.order_number)
            .where(Order.order_number.startswith(day_prefix, autoescape=True))
            .order_by(func.length(Order.order_number).desc(), Order.order_number.desc())
            .limit(1)
        )
        last = result.scalar_one_or_none()
        if last is None:
            return 0
        return self.parse_sequence(last, now) or 0

    async def next_order_number(self, session: AsyncSession, now: datetime) -> str:
        """Next candidate number for ``now``'s day."""
        return self.format(now, await self.last_sequence(session, now) + 1)
