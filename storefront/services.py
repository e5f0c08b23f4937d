"""
Service wiring.

Builds the fulfillment components over one session factory and connects
the order store's status changes to the history projection.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.checkout.orchestrator import CheckoutOrchestrator
from storefront.collaborators.cart import CartGateway
from storefront.collaborators.catalog import CatalogGateway
from storefront.config.settings import CheckoutSettings
from storefront.history.projection import OrderHistoryProjection
from storefront.inventory.guard import InventoryGuard
from storefront.orders.store import OrderStore


@dataclass
class FulfillmentServices:
    catalog: CatalogGateway
    carts: CartGateway
    guard: InventoryGuard
    store: OrderStore
    history: OrderHistoryProjection
    checkout: CheckoutOrchestrator


def build_services(
    sessions: async_sessionmaker[AsyncSession],
    settings: Optional[CheckoutSettings] = None,
) -> FulfillmentServices:
    settings = settings or CheckoutSettings()
    catalog = CatalogGateway()
    carts = CartGateway(sessions, catalog)
    guard = InventoryGuard(sessions, catalog)
    store = OrderStore(sessions, guard, settings)
    history = OrderHistoryProjection(sessions)
    store.status_listeners.append(history.on_status_change)

    return FulfillmentServices(
        catalog=catalog,
        carts=carts,
        guard=guard,
        store=store,
        history=history,
        checkout=CheckoutOrchestrator(carts, guard, store, history, settings),
    )
