from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from storecore.dependencies import get_product_service, get_stock_service, get_store_id
from storecore.schemas.product import ProductRead
from storecore.schemas.stock import (
    BatchDecrementRequest,
    BatchDecrementResult,
    LowStockDigest,
    StockCheckResult,
    StockDecrement,
    StockDecrementRequest,
    StockItemRequest,
    StockMovementRead,
    StockSetRequest,
    StockSummary,
    ThresholdUpdate,
)
from storecore.services.product_service import ProductService
from storecore.services.stock_service import StockService

router = APIRouter(prefix="/stock", tags=["stock"])


@router.post("/check", response_model=StockCheckResult)
async def check_stock(
    items: List[StockItemRequest],
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    return await service.check_stock(store_id, items)


@router.post("/decrement", response_model=StockDecrement)
async def decrement_stock(
    body: StockDecrementRequest,
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    result = await service.decrement_stock(
        store_id, body.product_id, body.quantity, variant=body.variant, order_id=body.order_id
    )
    if not result:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=result.model_dump(mode="json"))
    return result


@router.post("/batch-decrement", response_model=BatchDecrementResult)
async def batch_decrement_stock(
    body: BatchDecrementRequest,
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    result = await service.batch_decrement_stock(store_id, body.items, order_id=body.order_id)
    if not result:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=result.model_dump(mode="json"))
    return result


@router.put("/products/{product_id}", response_model=StockMovementRead)
async def set_stock(
    product_id: str,
    body: StockSetRequest,
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    return await service.set_stock(store_id, product_id, body.stock, reason=body.reason, user_id=body.user_id)


@router.get("/summary", response_model=StockSummary)
async def stock_summary(
    store_id: Optional[str] = Depends(get_store_id),
    service: StockService = Depends(get_stock_service),
):
    return await service.get_stock_summary(store_id)


@router.get("/low", response_model=List[ProductRead])
async def low_stock(
    limit: int = Query(20, ge=1, le=500),
    store_id: Optional[str] = Depends(get_store_id),
    service: StockService = Depends(get_stock_service),
):
    return await service.get_low_stock_products(store_id, limit=limit)


@router.get("/out", response_model=List[ProductRead])
async def out_of_stock(
    limit: int = Query(20, ge=1, le=500),
    store_id: Optional[str] = Depends(get_store_id),
    service: StockService = Depends(get_stock_service),
):
    return await service.get_out_of_stock_products(store_id, limit=limit)


@router.get("/movements", response_model=List[StockMovementRead])
async def stock_movements(
    product_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    store_id: Optional[str] = Depends(get_store_id),
    service: StockService = Depends(get_stock_service),
):
    return await service.get_stock_movements(store_id, product_id=product_id, limit=limit)


@router.get("/threshold")
async def get_threshold(
    store_id: Optional[str] = Depends(get_store_id),
    service: StockService = Depends(get_stock_service),
):
    return {"threshold": await service.get_low_stock_threshold(store_id)}


@router.put("/threshold")
async def set_threshold(
    body: ThresholdUpdate,
    store_id: Optional[str] = Depends(get_store_id),
    service: StockService = Depends(get_stock_service),
):
    return {"threshold": await service.set_low_stock_threshold(store_id, body.threshold)}


@router.post("/alerts", response_model=LowStockDigest)
async def send_low_stock_alerts(
    recipient: Optional[str] = Query(None),
    store_id: Optional[str] = Depends(get_store_id),
    service: StockService = Depends(get_stock_service),
):
    return await service.send_low_stock_digest(store_id, recipient=recipient)
