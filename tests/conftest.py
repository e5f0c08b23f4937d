"""
Test Suite Configuration
"""
from datetime import datetime
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from storefront.checkout.validation import CustomerInfo
from storefront.config.settings import CheckoutSettings, SecuritySettings, Settings
from storefront.database.connection import create_engine_for_url, create_session_factory, create_tables
from storefront.database.models import Product
from storefront.database.seed import seed_products
from storefront.serving.api.main import create_api_app
from storefront.services import FulfillmentServices, build_services


@pytest.fixture
def order_day() -> datetime:
    return datetime(2025, 1, 15, 10, 30)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
        security=SecuritySettings(rate_limit_enabled=False),
    )


@pytest.fixture
def checkout_settings(test_settings) -> CheckoutSettings:
    return test_settings.checkout


@pytest.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Per-test SQLite database file, so concurrent sessions really contend"""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    await create_tables(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


@pytest.fixture
def services(session_factory, checkout_settings) -> FulfillmentServices:
    return build_services(session_factory, checkout_settings)


@pytest.fixture
async def products(session_factory):
    """Catalog with a handful of products"""
    return await seed_products(session_factory, [
        {"id": "P1", "name": "Ceramic Mug", "price": "120000", "amount": 2,
         "image": "/img/mug.jpg", "slug": "ceramic-mug", "category": "kitchen"},
        {"id": "P2", "name": "Linen Apron", "price": "250000", "amount": 3,
         "slug": "linen-apron", "category": "kitchen"},
        {"id": "P3", "name": "Tea Towel", "price": "45000", "amount": 50},
    ])


@pytest.fixture
def customer() -> CustomerInfo:
    return CustomerInfo(
        name="Nguyen Van An",
        email="An.Nguyen@Example.com",
        phone="0901234567",
        address="12 Nguyen Hue, District 1",
        payment_method="cod",
        notes="Leave at reception",
    )


@pytest.fixture
def customer_payload() -> dict:
    return {
        "name": "Tran Thi Binh",
        "email": "binh@example.com",
        "phone": "0912345678",
        "address": "45 Le Loi, District 3",
    }


async def stock_of(session_factory, product_id: str) -> int:
    async with session_factory() as session:
        product = await session.get(Product, product_id)
        return product.amount


@pytest.fixture
def get_stock(session_factory):
    async def _get(product_id: str) -> int:
        return await stock_of(session_factory, product_id)
    return _get


@pytest.fixture
async def client(test_settings, services) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with test services"""
    app = create_api_app(settings=test_settings, services=services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
