from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from storecore.dependencies import get_product_service, get_store_id
from storecore.schemas.product import ProductBody, ProductFilters, ProductPage, ProductRead, ProductSeed
from storecore.services.product_service import ProductService

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=ProductPage)
async def list_products(
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    filters = ProductFilters(category=category, subcategory=subcategory, limit=limit, offset=offset)
    return await service.list_products(store_id, filters)


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
async def create_product(
    body: ProductBody,
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    return await service.create_product(store_id, body)


@router.post("/seed")
async def seed_products(
    bodies: List[ProductSeed],
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    created = await service.seed_products(store_id, bodies)
    return {"created": created, "received": len(bodies)}


@router.get("/{product_id}", response_model=ProductRead)
async def get_product(
    product_id: str,
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    return await service.get_product(store_id, product_id)


@router.put("/{product_id}", response_model=ProductRead)
async def update_product(
    product_id: str,
    body: ProductBody,
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    return await service.update_product(store_id, product_id, body)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: str,
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    if not await service.delete_product(store_id, product_id):
        raise HTTPException(status_code=404, detail=f"Product {product_id} not found")


@router.post("/{product_id}/view")
async def track_view(
    product_id: str,
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    return {"success": await service.track_view(store_id, product_id)}


@router.post("/{product_id}/click")
async def track_click(
    product_id: str,
    store_id: Optional[str] = Depends(get_store_id),
    service: ProductService = Depends(get_product_service),
):
    return {"success": await service.track_click(store_id, product_id)}
