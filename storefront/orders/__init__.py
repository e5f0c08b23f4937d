"""
Orders Module
"""
from .numbering import OrderNumberGenerator
from .status import Actor, TransitionPlan, plan_transition, is_terminal
from .store import OrderStore, OrderPage, StatusChange

__all__ = [
    "OrderNumberGenerator",
    "Actor",
    "TransitionPlan",
    "plan_transition",
    "is_terminal",
    "OrderStore",
    "OrderPage",
    "StatusChange",
]
