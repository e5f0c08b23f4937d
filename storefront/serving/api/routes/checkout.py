"""
Checkout API Endpoint

Logged-in callers check out their stored cart; guests (or callers who
pass ``items``) check out inline items priced from the catalog.
"""

from fastapi import APIRouter, Depends, status

from storefront.errors import EmptyCartError
from storefront.serving.api.dependencies import Caller, get_caller, get_services
from storefront.serving.api.schemas import CheckoutRequest, CheckoutResponse
from storefront.services import FulfillmentServices

router = APIRouter()


@router.post("", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    body: CheckoutRequest,
    caller: Caller = Depends(get_caller),
    services: FulfillmentServices = Depends(get_services),
) -> CheckoutResponse:
    """
    Convert a cart into a pending order.

    Errors:
    - 400 EmptyCart
    - 404 NotFound (unknown product)
    - 409 InsufficientStock with product, requested and available
    - 422 InvalidCustomer with missing and invalid fields
    """
    customer = body.customer.to_customer_info()

    if body.items is not None:
        confirmation = await services.checkout.checkout_items(
            [item.model_dump() for item in body.items],
            customer,
            user_id=caller.user_id,
            account_email=caller.email,
        )
    elif caller.is_authenticated:
        confirmation = await services.checkout.checkout_user_cart(
            caller.user_id,
            customer,
            account_email=caller.email,
        )
    else:
        raise EmptyCartError()

    return CheckoutResponse.model_validate(confirmation)
