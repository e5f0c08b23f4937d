"""
Inventory Module
"""
from .guard import InventoryGuard, ReservationProof, StockLine, merge_lines

__all__ = [
    "InventoryGuard",
    "ReservationProof",
    "StockLine",
    "merge_lines",
]
