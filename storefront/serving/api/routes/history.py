"""
Order History API Endpoints

Customer-facing order lists served from the order history projection.
Both lookups merge duplicate history records they come across.
"""

from fastapi import APIRouter, Depends, Query

from storefront.history.projection import CustomerOrders
from storefront.serving.api.dependencies import Caller, get_services, require_user
from storefront.serving.api.schemas import CustomerOrdersResponse, HistoryCustomer, HistoryOrderResponse
from storefront.services import FulfillmentServices

router = APIRouter()


def _response(result: CustomerOrders) -> CustomerOrdersResponse:
    return CustomerOrdersResponse(
        customer=HistoryCustomer(
            email=result.email,
            name=result.name,
            phone=result.phone,
            user_id=result.user_id,
            total_orders=result.total_orders,
        ),
        orders=[HistoryOrderResponse.model_validate(entry) for entry in result.orders],
        records_merged=result.records_merged,
    )


@router.get("/by-email", response_model=CustomerOrdersResponse)
async def orders_by_email(
    email: str = Query(..., min_length=3),
    services: FulfillmentServices = Depends(get_services),
) -> CustomerOrdersResponse:
    """Orders filed under an email, newest first."""
    return _response(await services.history.orders_for_customer(None, email))


@router.get("/mine", response_model=CustomerOrdersResponse)
async def my_orders(
    caller: Caller = Depends(require_user),
    services: FulfillmentServices = Depends(get_services),
) -> CustomerOrdersResponse:
    """The caller's orders across guest and logged-in checkouts, newest first."""
    return _response(await services.history.orders_for_customer(caller.user_id, caller.email))
