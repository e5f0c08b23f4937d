"""
Request and response models for the fulfillment API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from storefront.checkout.validation import CustomerInfo
from storefront.database.models import OrderStatus, PaymentStatus


# =============================================================================
# CHECKOUT
# =============================================================================

class CheckoutItem(BaseModel):
    """Inline item for guest checkout"""
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class CustomerPayload(BaseModel):
    """
    Customer details from the checkout form.

    Fields are optional here so that every missing one is reported together
    by checkout validation.
    """
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    def to_customer_info(self) -> CustomerInfo:
        name = self.name
        if not name and (self.first_name or self.last_name):
            name = " ".join(part for part in (self.first_name, self.last_name) if part)
        address = self.address
        if address and self.address2:
            address = f"{address}, {self.address2}"
        return CustomerInfo(
            name=name,
            email=self.email,
            phone=self.phone,
            address=address,
            city=self.city,
            country=self.country,
            payment_method=self.payment_method,
            notes=self.notes,
        )


class CheckoutRequest(BaseModel):
    """Checkout the caller's cart, or the inline items for a guest"""
    customer: CustomerPayload
    items: Optional[List[CheckoutItem]] = None


class CheckoutResponse(BaseModel):
    """Order confirmation"""
    order_id: UUID
    order_number: str
    total_amount: Decimal
    item_count: int
    cart_cleared: bool
    history_synced: bool
    warnings: List[str]

    class Config:
        from_attributes = True


# =============================================================================
# ORDERS
# =============================================================================

class OrderItemResponse(BaseModel):
    product_id: str
    product_name: str
    product_sku: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Order with its line snapshot"""
    id: UUID
    order_number: str
    user_id: Optional[str]
    status: OrderStatus
    items: List[OrderItemResponse]
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total_amount: Decimal
    currency: str
    shipping_address: Dict[str, Any]
    payment_method: str
    payment_status: PaymentStatus
    customer_note: Optional[str]
    admin_note: Optional[str]
    tracking: Optional[Dict[str, Any]]
    created_at: datetime
    updated_at: Optional[datetime]
    shipped_at: Optional[datetime]
    delivered_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    """Paginated order list"""
    items: List[OrderResponse]
    total_count: int
    page: int
    limit: int
    total_pages: int


class TrackingInfo(BaseModel):
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    """Admin status change"""
    status: OrderStatus
    tracking: Optional[TrackingInfo] = None
    admin_note: Optional[str] = None


class StatusChangeResponse(BaseModel):
    order: OrderResponse
    previous_status: OrderStatus
    changed: bool
    restock_skipped: List[str]


# =============================================================================
# ORDER HISTORY
# =============================================================================

class HistoryOrderResponse(BaseModel):
    order_id: UUID
    order_number: str
    order_date: datetime
    status: str
    total_amount: Decimal
    shipping_address: Dict[str, Any]
    payment_method: str
    notes: Optional[str]
    products: List[Dict[str, Any]]

    class Config:
        from_attributes = True


class HistoryCustomer(BaseModel):
    email: str
    name: Optional[str]
    phone: Optional[str]
    user_id: Optional[str]
    total_orders: int


class CustomerOrdersResponse(BaseModel):
    """A customer's orders, newest first"""
    customer: HistoryCustomer
    orders: List[HistoryOrderResponse]
    records_merged: int
