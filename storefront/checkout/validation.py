"""
Checkout customer validation.

Collects every missing and malformed field before rejecting, so the
customer sees all problems with the form at once.
"""

import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from storefront.config.settings import CheckoutSettings
from storefront.errors import InvalidCustomerError

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PAYMENT_METHOD_ALIASES = {"cod": "cash_on_delivery"}

REQUIRED_FIELDS = ("name", "email", "phone", "address")


@dataclass(frozen=True)
class CustomerInfo:
    """Customer details captured on the checkout form."""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    def shipping_address(self) -> Dict[str, str]:
        return {
            "full_name": self.name,
            "phone": self.phone,
            "email": self.email,
            "street": self.address,
            "city": self.city,
            "country": self.country,
        }


def phone_digits(phone: str) -> str:
    return "".join(ch for ch in phone if ch.isdigit())


def validate_customer(info: CustomerInfo, settings: CheckoutSettings) -> CustomerInfo:
    """
    Validate ``info`` and return it with defaults applied.

    City, country and payment method fall back to the configured defaults,
    and the ``cod`` shorthand maps to ``cash_on_delivery``.

    Raises:
        InvalidCustomerError: Listing every missing and invalid field
    """
    values = {name: (getattr(info, name) or "").strip() for name in REQUIRED_FIELDS}
    missing: List[str] = [name for name in REQUIRED_FIELDS if not values[name]]
    invalid: Dict[str, str] = {}

    if values["email"] and not EMAIL_PATTERN.match(values["email"]):
        invalid["email"] = "must be a valid email address"

    if values["phone"]:
        digits = len(phone_digits(values["phone"]))
        if not settings.phone_min_digits <= digits <= settings.phone_max_digits:
            invalid["phone"] = (
                f"must have {settings.phone_min_digits}-{settings.phone_max_digits} digits"
            )

    if values["address"] and len(values["address"]) < settings.min_address_length:
        invalid["address"] = f"must be at least {settings.min_address_length} characters"

    method = (info.payment_method or "").strip().lower() or settings.default_payment_method
    method = PAYMENT_METHOD_ALIASES.get(method, method)
    if method not in settings.payment_methods:
        invalid["payment_method"] = f"must be one of {', '.join(settings.payment_methods)}"

    if missing or invalid:
        raise InvalidCustomerError(missing=missing, invalid=invalid)

    return replace(
        info,
        name=values["name"],
        email=values["email"],
        phone=values["phone"],
        address=values["address"],
        city=(info.city or "").strip() or settings.default_city,
        country=(info.country or "").strip() or settings.default_country,
        payment_method=method,
        notes=(info.notes or "").strip() or None,
    )
