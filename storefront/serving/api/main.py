"""
FastAPI Application Factory

Creates and configures the fulfillment API application.
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import structlog

from storefront.config import Settings, get_settings
from storefront.errors import FulfillmentError
from storefront.serving.api.middleware import (
    RequestLoggingMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from storefront.serving.api.routes import (
    health_router,
    checkout_router,
    orders_router,
    history_router,
)
from storefront.services import FulfillmentServices

logger = structlog.get_logger(__name__)


def register_exception_handlers(app: FastAPI, debug: bool) -> None:
    """Map fulfillment errors to their status codes and a stable error body."""

    @app.exception_handler(FulfillmentError)
    async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "Request failed",
            path=request.url.path,
            error=exc.kind,
            message=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error", path=request.url.path, error_type=type(exc).__name__)
        content = {"error": "InternalError", "message": "Internal server error"}
        if debug:
            content["detail"] = f"{type(exc).__name__}: {exc}"
        return JSONResponse(status_code=500, content=content)


def create_api_app(
    settings: Optional[Settings] = None,
    services: Optional[FulfillmentServices] = None,
    lifespan=None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Settings to use instead of the cached environment settings
        services: Pre-built services; built lazily from the global engine otherwise
        lifespan: Startup/shutdown context manager

    Returns:
        Configured FastAPI app instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Storefront Checkout API",
        description="Checkout, order lifecycle and order history for the storefront",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SecurityHeadersMiddleware)
    if settings.security.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            max_requests=settings.security.rate_limit_requests,
            window_seconds=settings.security.rate_limit_window_seconds,
        )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app, debug=settings.debug)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(checkout_router, prefix="/api/v1/checkout", tags=["Checkout"])
    app.include_router(orders_router, prefix="/api/v1/orders", tags=["Orders"])
    app.include_router(history_router, prefix="/api/v1/order-history", tags=["Order History"])

    return app
