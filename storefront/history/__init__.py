"""
Order History Module
"""
from .projection import CustomerKey, CustomerOrders, OrderHistoryProjection, OrderSummary

__all__ = [
    "CustomerKey",
    "CustomerOrders",
    "OrderHistoryProjection",
    "OrderSummary",
]
