"""Row factories used by the service and route tests."""
from datetime import datetime, timezone
from typing import Optional

from storecore.models import Category, License, Product, Store

STORE_A = "store-a"
STORE_B = "store-b"


async def create_store(
    session_factory,
    store_id: str,
    *,
    owner_email: Optional[str] = None,
    license_status: Optional[str] = "activated",
    max_products: Optional[int] = None,
    expires_at: Optional[datetime] = None,
) -> None:
    """Insert a store and (unless ``license_status`` is None) its license."""
    async with session_factory() as session:
        async with session.begin():
            session.add(Store(id=store_id, name=f"Store {store_id}", owner_email=owner_email))
            if license_status is not None:
                session.add(License(
                    serial=f"LIC-{store_id}",
                    plan="pro",
                    status=license_status,
                    store_id=store_id,
                    max_products=max_products,
                    expires_at=expires_at,
                    activated_at=datetime.now(timezone.utc),
                ))


async def create_product(session_factory, store_id: str, **fields) -> str:
    """Insert a product row directly, bypassing quota and cache."""
    values = {"name": "Test Product", "price": 1000, "stock": 10}
    values.update(fields)
    async with session_factory() as session:
        async with session.begin():
            product = Product(store_id=store_id, **values)
            session.add(product)
            await session.flush()
            return product.id


async def create_category(session_factory, store_id: str, slug: str, name: Optional[str] = None) -> str:
    async with session_factory() as session:
        async with session.begin():
            category = Category(store_id=store_id, slug=slug, name=name or slug.title())
            session.add(category)
            await session.flush()
            return category.id


async def get_product_row(session_factory, product_id: str) -> Optional[Product]:
    async with session_factory() as session:
        return await session.get(Product, product_id)
