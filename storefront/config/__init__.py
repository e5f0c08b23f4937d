"""
Storefront Checkout Service
Configuration Module
"""
from .settings import Settings, CheckoutSettings, get_settings

__all__ = ["Settings", "CheckoutSettings", "get_settings"]
