"""
Storefront Checkout Service

Turns carts into durable orders, drives them through their fulfillment
lifecycle and keeps a per-customer order history projection.
"""

__version__ = "1.0.0"
