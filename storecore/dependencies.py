from typing import Optional

from fastapi import Header, Request

from storecore.services.product_service import ProductService
from storecore.services.stock_service import StockService


async def get_store_id(x_store_id: Optional[str] = Header(None, alias="X-Store-ID")) -> Optional[str]:
    """Tenant id of the request. Authentication happens upstream of this service."""
    return x_store_id or None


def get_product_service(request: Request) -> ProductService:
    return request.app.state.product_service


def get_stock_service(request: Request) -> StockService:
    return request.app.state.stock_service
