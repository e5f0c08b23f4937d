"""
Fulfillment Errors

Every error raised by the checkout and order subsystem carries a stable
``kind`` that clients can branch on, an HTTP status for the API layer and a
human-readable message.
"""

from typing import Any, Dict, Iterable, Optional


class FulfillmentError(Exception):
    """Base exception for checkout and order fulfillment errors."""

    kind = "FulfillmentError"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Serializable error body."""
        return {"error": self.kind, "message": self.message, **self.details}


class NotFoundError(FulfillmentError):
    """Raised when a product, order or customer record does not exist."""

    kind = "NotFound"
    status_code = 404

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = str(key)
        super().__init__(f"{entity} not found: {key}")

    @property
    def details(self) -> Dict[str, Any]:
        return {"entity": self.entity, "key": self.key}


class InsufficientStockError(FulfillmentError):
    """Raised when a requested quantity exceeds the stock on hand."""

    kind = "InsufficientStock"
    status_code = 409

    def __init__(self, product_id: str, requested: int, available: int, product_name: Optional[str] = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.product_name = product_name
        label = product_name or product_id
        super().__init__(
            f"Product {label} has only {available} in stock, {requested} requested"
        )

    @property
    def details(self) -> Dict[str, Any]:
        return {
            "product": self.product_id,
            "requested": self.requested,
            "available": self.available,
        }


class InvalidCustomerError(FulfillmentError):
    """Raised when checkout customer information is incomplete or malformed."""

    kind = "InvalidCustomer"
    status_code = 422

    def __init__(self, missing: Iterable[str] = (), invalid: Optional[Dict[str, str]] = None):
        self.missing = list(missing)
        self.invalid = dict(invalid or {})
        parts = []
        if self.missing:
            parts.append(f"missing fields: {', '.join(self.missing)}")
        if self.invalid:
            parts.append(f"invalid fields: {', '.join(self.invalid)}")
        super().__init__("Customer information rejected (" + "; ".join(parts) + ")")

    @property
    def details(self) -> Dict[str, Any]:
        return {"missing": self.missing, "invalid": self.invalid}


class EmptyCartError(FulfillmentError):
    """Raised when checking out a cart without items."""

    kind = "EmptyCart"
    status_code = 400

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id
        super().__init__("Cart is empty")


class InvalidTransitionError(FulfillmentError):
    """Raised when an order status change is not permitted."""

    kind = "InvalidTransition"
    status_code = 409

    def __init__(self, current: str, requested: str, reason: Optional[str] = None):
        self.current = str(current)
        self.requested = str(requested)
        msg = f"Cannot change order status from {self.current} to {self.requested}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)

    @property
    def details(self) -> Dict[str, Any]:
        return {"current": self.current, "requested": self.requested}


class UnauthorizedError(FulfillmentError):
    """Raised when a route needs a caller identity and none was supplied."""

    kind = "Unauthorized"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class DuplicateOrderNumberError(FulfillmentError):
    """Raised when no unique order number could be allocated."""

    kind = "DuplicateOrderNumber"
    status_code = 503

    def __init__(self, order_number: str, attempts: int):
        self.order_number = order_number
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique order number after {attempts} attempts (last tried {order_number})"
        )

    @property
    def details(self) -> Dict[str, Any]:
        return {"order_number": self.order_number, "attempts": self.attempts}


class ProjectionWriteFailedError(FulfillmentError):
    """Raised when the order history projection could not be written."""

    kind = "ProjectionWriteFailed"
    status_code = 500

    def __init__(self, user_email: str, reason: str):
        self.user_email = user_email
        self.reason = reason
        super().__init__(f"Order history update failed for {user_email}: {reason}")
