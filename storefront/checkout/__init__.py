"""
Checkout Module
"""
from .validation import CustomerInfo, validate_customer
from .orchestrator import CheckoutOrchestrator, OrderConfirmation

__all__ = [
    "CustomerInfo",
    "validate_customer",
    "CheckoutOrchestrator",
    "OrderConfirmation",
]
