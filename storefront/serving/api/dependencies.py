"""
FastAPI dependencies: fulfillment services and caller identity.

Authentication happens upstream; the auth layer forwards the caller as
``X-User-Id`` and ``X-User-Email`` headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from storefront.config import get_settings
from storefront.database.connection import get_session_factory
from storefront.errors import UnauthorizedError
from storefront.services import FulfillmentServices, build_services


@dataclass(frozen=True)
class Caller:
    user_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


def get_services(request: Request) -> FulfillmentServices:
    """Services stored on the app, built from the global engine on first use."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services(get_session_factory(), get_settings().checkout)
        request.app.state.services = services
    return services


def get_caller(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
) -> Caller:
    return Caller(user_id=x_user_id or None, email=x_user_email or None)


def require_user(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_authenticated:
        raise UnauthorizedError()
    return caller
