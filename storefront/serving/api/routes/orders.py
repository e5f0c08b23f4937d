"""
Orders API Endpoints

Order lookups for customers and the status lifecycle for the back office.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
import structlog

from storefront.database.models import Order, OrderStatus
from storefront.orders.store import StatusChange
from storefront.serving.api.dependencies import Caller, get_caller, get_services, require_user
from storefront.serving.api.schemas import (
    OrderListResponse,
    OrderResponse,
    StatusChangeResponse,
    StatusUpdateRequest,
)
from storefront.serving.cache import orders_cache
from storefront.services import FulfillmentServices

logger = structlog.get_logger(__name__)
router = APIRouter()


def _order_payload(order: Order) -> dict:
    return OrderResponse.model_validate(order).model_dump(mode="json")


async def _status_response(change: StatusChange) -> StatusChangeResponse:
    await orders_cache.delete(change.order.order_number)
    return StatusChangeResponse(
        order=OrderResponse.model_validate(change.order),
        previous_status=change.previous_status,
        changed=change.changed,
        restock_skipped=change.restock_skipped,
    )


@router.get("", response_model=OrderListResponse)
async def list_orders(
    status: Optional[OrderStatus] = None,
    user_id: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    services: FulfillmentServices = Depends(get_services),
) -> OrderListResponse:
    """
    List orders newest-first.

    Supports filtering by:
    - Status
    - Owner
    - Creation date range
    """
    result = await services.store.list(
        status=status,
        user_id=user_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in result.items],
        total_count=result.total_count,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/number/{order_number}", response_model=OrderResponse)
async def get_order_by_number(
    order_number: str,
    services: FulfillmentServices = Depends(get_services),
) -> dict:
    """Single order by its order number (cached)."""

    async def load() -> dict:
        return _order_payload(await services.store.get_by_number(order_number))

    return await orders_cache.get_or_set(order_number, load)


@router.get("/{order_ref}", response_model=OrderResponse)
async def get_order(
    order_ref: str,
    caller: Caller = Depends(get_caller),
    services: FulfillmentServices = Depends(get_services),
) -> OrderResponse:
    """
    Single order by id or order number.

    Scoped to the caller when ``X-User-Id`` is present; someone else's
    order looks exactly like a missing one.
    """
    order = await services.store.get(order_ref, user_id=caller.user_id)
    return OrderResponse.model_validate(order)


@router.put("/{order_ref}/status", response_model=StatusChangeResponse)
async def update_order_status(
    order_ref: str,
    body: StatusUpdateRequest,
    services: FulfillmentServices = Depends(get_services),
) -> StatusChangeResponse:
    """Admin status transition from any non-terminal state."""
    change = await services.store.update_status(
        order_ref,
        body.status,
        tracking=body.tracking.model_dump(exclude_none=True) if body.tracking else None,
        admin_note=body.admin_note,
    )
    return await _status_response(change)


@router.put("/{order_ref}/cancel", response_model=StatusChangeResponse)
async def cancel_order(
    order_ref: str,
    caller: Caller = Depends(require_user),
    services: FulfillmentServices = Depends(get_services),
) -> StatusChangeResponse:
    """Customer cancel, only while the order is pending."""
    change = await services.store.cancel_by_customer(order_ref, caller.user_id)
    return await _status_response(change)
