"""
API Routes Module
"""
from .health import router as health_router
from .checkout import router as checkout_router
from .orders import router as orders_router
from .history import router as history_router

__all__ = [
    "health_router",
    "checkout_router",
    "orders_router",
    "history_router",
]
