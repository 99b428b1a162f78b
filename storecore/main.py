# storecore/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storecore.core.config import get_settings
from storecore.core.exceptions import (
    BaseServiceError,
    NoLicenseError,
    ProductCreationError,
    ProductLimitExceededError,
    ProductNotFoundError,
    TenantRequiredError,
)
from storecore.core.logging_config import configure_logging
from storecore.routes import health, products, stock
from storecore.services.notification_dispatcher import NotificationDispatcher
from storecore.services.product_service import ProductService
from storecore.services.stock_service import StockService

logger = logging.getLogger(__name__)


def _error_body(exc: BaseServiceError, **extra) -> dict:
    return {"error": str(exc), "code": exc.code, **extra}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProductNotFoundError)
    async def not_found_handler(request: Request, exc: ProductNotFoundError):
        return JSONResponse(status_code=404, content=_error_body(exc))

    @app.exception_handler(NoLicenseError)
    async def no_license_handler(request: Request, exc: NoLicenseError):
        return JSONResponse(status_code=403, content=_error_body(exc))

    @app.exception_handler(ProductLimitExceededError)
    async def limit_handler(request: Request, exc: ProductLimitExceededError):
        return JSONResponse(
            status_code=403,
            content=_error_body(exc, limit=exc.limit, current=exc.current, requested=exc.requested),
        )

    @app.exception_handler(TenantRequiredError)
    async def tenant_required_handler(request: Request, exc: TenantRequiredError):
        return JSONResponse(status_code=400, content=_error_body(exc))

    @app.exception_handler(ProductCreationError)
    async def creation_handler(request: Request, exc: ProductCreationError):
        return JSONResponse(status_code=400, content=_error_body(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": str(exc), "code": "INVALID_REQUEST"})


def create_app(
    product_service: Optional[ProductService] = None,
    stock_service: Optional[StockService] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """Build the application. Services can be injected (tests, embedding)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        if app.state.dispatcher is not None:
            await app.state.dispatcher.start()
        logger.info("storecore started (environment=%s)", get_settings().ENVIRONMENT)
        yield
        if app.state.dispatcher is not None:
            await app.state.dispatcher.stop()
        logger.info("storecore stopped")

    app = FastAPI(title="storecore", lifespan=lifespan)

    if dispatcher is None and product_service is None:
        dispatcher = NotificationDispatcher()
    if product_service is None:
        product_service = ProductService(dispatcher=dispatcher)
    if dispatcher is None:
        dispatcher = product_service.dispatcher
    if stock_service is None:
        stock_service = StockService(session_factory=product_service.session_factory, dispatcher=dispatcher)

    app.state.dispatcher = dispatcher
    app.state.product_service = product_service
    app.state.stock_service = stock_service

    register_exception_handlers(app)
    app.include_router(health.router)
    app.include_router(products.router)
    app.include_router(stock.router)
    return app


app = create_app()
