"""
Stock reporting and the per-store low-stock threshold.

Read-only views over the products of one store, plus the threshold setting
that decides when a sale triggers a low-stock alert. The on-demand digest
queues one alert for every low product of a store.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import case, func, select

from storecore.core.config import get_settings
from storecore.core.utils import utc_now
from storecore.models.product import Product
from storecore.models.stock_movement import StockMovement
from storecore.models.store import Store, StoreConfig
from storecore.schemas.notifications import LowStockAlert, LowStockProduct
from storecore.schemas.product import ProductRead
from storecore.schemas.stock import LowStockDigest, StockMovementRead, StockSummary
from storecore.tenancy import TenantScope, tenant_scope

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD_KEY = "low_stock_threshold"
DIGEST_LIMIT = 50


async def read_low_stock_threshold(scope: TenantScope, default: int) -> int:
    """Threshold configured for the scope's store, ``default`` when unset or unparsable."""
    stmt = scope.scoped(
        select(StoreConfig.value).where(StoreConfig.key == LOW_STOCK_THRESHOLD_KEY),
        StoreConfig,
    )
    value = (await scope.session.execute(stmt)).scalar_one_or_none()
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s %r for store %s", LOW_STOCK_THRESHOLD_KEY, value, scope.tenant_id)
        return default


class StockService:
    def __init__(self, session_factory=None, default_threshold: Optional[int] = None, dispatcher=None):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.default_threshold = (
            default_threshold if default_threshold is not None
            else get_settings().DEFAULT_LOW_STOCK_THRESHOLD
        )

    def _scope(self, tenant_id: Optional[str]):
        return tenant_scope(tenant_id, session_factory=self.session_factory)

    async def get_low_stock_threshold(self, tenant_id: str) -> int:
        async with self._scope(tenant_id) as scope:
            return await read_low_stock_threshold(scope, self.default_threshold)

    async def set_low_stock_threshold(self, tenant_id: str, threshold: int) -> int:
        if threshold < 0:
            raise ValueError("Threshold must be a non-negative integer")

        async with self._scope(tenant_id) as scope:
            store_id = scope.require_tenant()
            stmt = scope.scoped(
                select(StoreConfig).where(StoreConfig.key == LOW_STOCK_THRESHOLD_KEY),
                StoreConfig,
            ).with_for_update()
            config = (await scope.session.execute(stmt)).scalar_one_or_none()
            if config is None:
                scope.session.add(StoreConfig(store_id=store_id, key=LOW_STOCK_THRESHOLD_KEY, value=str(threshold)))
            else:
                config.value = str(threshold)
                config.updated_at = utc_now()

        logger.info("Low stock threshold for store %s set to %d", tenant_id, threshold)
        return threshold

    async def _low_stock(self, scope: TenantScope, limit: int) -> Tuple[int, List[Product]]:
        threshold = await read_low_stock_threshold(scope, self.default_threshold)
        stmt = (
            scope.scoped(select(Product), Product)
            .where(Product.stock > 0, Product.stock <= threshold)
            .order_by(Product.stock.asc(), Product.id)
            .limit(limit)
        )
        return threshold, list((await scope.session.execute(stmt)).scalars().all())

    async def get_low_stock_products(self, tenant_id: str, limit: int = 20) -> List[ProductRead]:
        """Products with ``0 < stock <= threshold``, lowest stock first."""
        async with self._scope(tenant_id) as scope:
            _, products = await self._low_stock(scope, limit)
            return [ProductRead.from_orm_model(p) for p in products]

    async def send_low_stock_digest(self, tenant_id: str, recipient: Optional[str] = None) -> LowStockDigest:
        """
        Queue one alert listing the store's low-stock products.

        ``recipient`` defaults to the store owner. Nothing is queued when no
        product is low; ``sent`` is False as well when the dispatcher is
        missing or its queue is full.
        """
        async with self._scope(tenant_id) as scope:
            store_id = scope.require_tenant()
            threshold, products = await self._low_stock(scope, DIGEST_LIMIT)
            if products and recipient is None:
                recipient = (await scope.session.execute(
                    select(Store.owner_email).where(Store.id == store_id)
                )).scalar_one_or_none()

        if not products:
            return LowStockDigest(sent=False, products_count=0)

        if self.dispatcher is None:
            logger.warning("No notification dispatcher; low stock digest for store %s not sent", store_id)
            return LowStockDigest(sent=False, products_count=len(products))

        alert = LowStockAlert(
            store_id=store_id,
            recipient=recipient,
            products=[LowStockProduct(id=p.id, name=p.name, stock=p.stock) for p in products],
            threshold=threshold,
        )
        sent = self.dispatcher.dispatch(alert)
        logger.info("Low stock digest for store %s: %d products, queued=%s", store_id, len(products), sent)
        return LowStockDigest(sent=sent, products_count=len(products))

    async def get_out_of_stock_products(self, tenant_id: str, limit: int = 20) -> List[ProductRead]:
        async with self._scope(tenant_id) as scope:
            stmt = (
                scope.scoped(select(Product), Product)
                .where(Product.stock <= 0)
                .order_by(Product.updated_at.desc(), Product.id)
                .limit(limit)
            )
            products = (await scope.session.execute(stmt)).scalars().all()
            return [ProductRead.from_orm_model(p) for p in products]

    async def get_stock_summary(self, tenant_id: str) -> StockSummary:
        async with self._scope(tenant_id) as scope:
            threshold = await read_low_stock_threshold(scope, self.default_threshold)
            stmt = scope.scoped(
                select(
                    func.count(Product.id),
                    func.coalesce(func.sum(case((Product.stock > threshold, 1), else_=0)), 0),
                    func.coalesce(func.sum(case(((Product.stock > 0) & (Product.stock <= threshold), 1), else_=0)), 0),
                    func.coalesce(func.sum(case((Product.stock <= 0, 1), else_=0)), 0),
                    func.coalesce(func.sum(Product.stock * Product.price), 0),
                ),
                Product,
            )
            total, in_stock, low_stock, out_of_stock, value = (await scope.session.execute(stmt)).one()

        return StockSummary(
            total_products=total,
            in_stock=in_stock,
            low_stock=low_stock,
            out_of_stock=out_of_stock,
            total_stock_value=value,
            threshold=threshold,
        )

    async def get_stock_movements(
        self,
        tenant_id: str,
        product_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[StockMovementRead]:
        async with self._scope(tenant_id) as scope:
            stmt = scope.scoped(select(StockMovement), StockMovement)
            if product_id:
                stmt = stmt.where(StockMovement.product_id == product_id)
            stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id).limit(limit)
            movements = (await scope.session.execute(stmt)).scalars().all()
            return [StockMovementRead.from_orm_model(m) for m in movements]
