"""
Collaborator Gateways

Storage adapters over the catalog and cart tables owned by other services.
"""
from .catalog import CatalogGateway
from .cart import CartGateway, CartLine, CartSnapshot

__all__ = [
    "CatalogGateway",
    "CartGateway",
    "CartLine",
    "CartSnapshot",
]
