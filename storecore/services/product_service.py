"""
Purpose: The inventory store. Tenant-scoped product CRUD, stock checks and
stock decrements for one store at a time.

Every operation opens its own ``tenant_scope`` (one transaction) and hands the
scope to every query, so nothing here can read or write another store's rows.

Key features of this service:
- Reads are cached per store and per exact query shape; every successful write
  drops the store's product namespaces once the transaction has committed
- Stock never goes negative: single decrements are one conditional UPDATE,
  batches lock their rows in id order and apply a single guarded UPDATE
- Product creation is gated by the store's license quota inside the same
  transaction as the insert
- Sales are recorded as stock movements; products that fall to the store's
  low-stock threshold produce an alert, queued only after commit
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, case, delete, func, literal, or_, select, update
from sqlalchemy.exc import IntegrityError

from storecore.core.config import get_settings
from storecore.core.enums import DecrementOutcome, MovementReason
from storecore.core.exceptions import ProductCreationError, ProductNotFoundError
from storecore.database import JSONType
from storecore.models.product import Category, Product
from storecore.models.stock_movement import StockMovement
from storecore.models.store import Store
from storecore.schemas.notifications import LowStockAlert, LowStockProduct
from storecore.schemas.product import ProductBody, ProductFilters, ProductPage, ProductRead, ProductSeed
from storecore.schemas.stock import (
    BatchDecrementResult,
    StockCheckResult,
    StockDecrement,
    StockItemInfo,
    StockItemRequest,
    StockMovementRead,
    StockShortfall,
)
from storecore.services.cache_service import CacheKey, CachePrefix, CacheService, get_cache_service
from storecore.services.license_service import ensure_can_create
from storecore.services.stock_service import read_low_stock_threshold
from storecore.tenancy import TenantScope, tenant_scope

logger = logging.getLogger(__name__)

PRODUCTS = "products"  # list shapes
PRODUCT = "product"  # single products by id


@dataclass
class _Sold:
    product_id: str
    name: str
    previous_stock: int
    new_stock: int
    variant: Optional[str] = None
    variant_remaining: Optional[int] = None


class _BatchConflict(Exception):
    """Guarded batch UPDATE touched fewer rows than were validated."""


class ProductService:
    def __init__(
        self,
        cache: Optional[CacheService] = None,
        dispatcher=None,
        session_factory=None,
    ):
        settings = get_settings()
        self.cache = cache if cache is not None else get_cache_service()
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.cache_ttl = settings.PRODUCT_CACHE_TTL
        self.default_stock = settings.DEFAULT_PRODUCT_STOCK
        self.default_threshold = settings.DEFAULT_LOW_STOCK_THRESHOLD

    def _scope(self, tenant_id: Optional[str]):
        return tenant_scope(tenant_id, session_factory=self.session_factory)

    def invalidate(self, tenant_id: str) -> None:
        """Drop every cached product read for the store."""
        self.cache.delete_by_prefix(CachePrefix(tenant_id, PRODUCTS))
        self.cache.delete_by_prefix(CachePrefix(tenant_id, PRODUCT))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def list_products(self, tenant_id: Optional[str], filters: Optional[ProductFilters] = None) -> ProductPage:
        filters = filters or ProductFilters()

        if not tenant_id:
            # Closed by default: the scope matches nothing and the result is not cached
            async with self._scope(None) as scope:
                return await self._load_page(scope, filters)

        async def loader() -> ProductPage:
            async with self._scope(tenant_id) as scope:
                return await self._load_page(scope, filters)

        key = CacheKey.build(tenant_id, PRODUCTS, **filters.model_dump())
        page = await self.cache.get_or_set(key, self.cache_ttl, loader)
        return page.model_copy(deep=True)

    async def _load_page(self, scope: TenantScope, filters: ProductFilters) -> ProductPage:
        stmt = select(Product)
        if filters.category:
            stmt = stmt.outerjoin(
                Category,
                and_(Category.id == Product.category_id, Category.store_id == Product.store_id),
            ).where(or_(Product.category_id == filters.category, Category.slug == filters.category))
        if filters.subcategory:
            stmt = stmt.where(Product.subcategory == filters.subcategory)
        stmt = scope.scoped(stmt, Product)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await scope.session.execute(count_stmt)).scalar_one()

        stmt = (
            stmt.order_by(Product.order_num.asc(), Product.created_at.desc(), Product.id)
            .limit(filters.limit)
            .offset(filters.offset)
        )
        products = (await scope.session.execute(stmt)).scalars().all()
        return ProductPage(products=[ProductRead.from_orm_model(p) for p in products], total=total)

    async def get_product(self, tenant_id: Optional[str], product_id: str) -> ProductRead:
        """Raises ProductNotFoundError for ids that are absent or belong to another store."""

        async def loader() -> ProductRead:
            async with self._scope(tenant_id) as scope:
                product = await self._fetch(scope, product_id)
                if product is None:
                    raise ProductNotFoundError(product_id)
                return ProductRead.from_orm_model(product)

        if not tenant_id:
            return await loader()

        key = CacheKey.build(tenant_id, PRODUCT, id=product_id)
        product = await self.cache.get_or_set(key, self.cache_ttl, loader)
        return product.model_copy(deep=True)

    async def _fetch(self, scope: TenantScope, product_id: str, lock: bool = False) -> Optional[Product]:
        stmt = scope.scoped(select(Product).where(Product.id == product_id), Product)
        if lock:
            stmt = stmt.with_for_update()
        return (await scope.session.execute(stmt)).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def create_product(self, tenant_id: Optional[str], body: ProductBody) -> ProductRead:
        """
        Creates a product for the store.

        Raises:
            TenantRequiredError: no store id
            NoLicenseError / ProductLimitExceededError: quota refused the insert
            ProductCreationError: the category is not the store's or the insert failed
        """
        async with self._scope(tenant_id) as scope:
            store_id = scope.require_tenant()
            await ensure_can_create(scope)
            await self._check_category(scope, body.category_id)

            product = Product(
                store_id=store_id,
                stock=body.resolved_stock(self.default_stock),
                variants_stock=body.variants_stock,
                **body.column_values(),
            )
            scope.session.add(product)
            await self._flush(scope, "Failed to create product")
            scope.after_commit(lambda: self.invalidate(store_id))
            result = ProductRead.from_orm_model(product)

        logger.info("Created product %s for store %s", result.id, store_id)
        return result

    async def update_product(self, tenant_id: Optional[str], product_id: str, body: ProductBody) -> ProductRead:
        """Replace every mutable field. Stock is kept unless stock or variants are given."""
        async with self._scope(tenant_id) as scope:
            store_id = scope.require_tenant()
            product = await self._fetch(scope, product_id, lock=True)
            if product is None:
                raise ProductNotFoundError(product_id)
            await self._check_category(scope, body.category_id)

            for field, value in body.column_values().items():
                setattr(product, field, value)
            product.stock = body.resolved_stock(product.stock)
            product.variants_stock = body.variants_stock

            await self._flush(scope, "Failed to update product")
            scope.after_commit(lambda: self.invalidate(store_id))
            result = ProductRead.from_orm_model(product)

        logger.info("Updated product %s for store %s", product_id, store_id)
        return result

    async def delete_product(self, tenant_id: Optional[str], product_id: str) -> bool:
        async with self._scope(tenant_id) as scope:
            store_id = scope.require_tenant()
            stmt = scope.scoped(delete(Product).where(Product.id == product_id), Product)
            result = await scope.session.execute(stmt.execution_options(synchronize_session=False))
            deleted = result.rowcount > 0
            if deleted:
                scope.after_commit(lambda: self.invalidate(store_id))

        if deleted:
            logger.info("Deleted product %s for store %s", product_id, store_id)
        return deleted

    async def seed_products(self, tenant_id: Optional[str], bodies: List[ProductSeed]) -> int:
        """
        Bulk import. Rows whose id already exists for the store get their name
        and price updated; every other row is inserted. The quota is checked
        once for all inserts. Returns the number of products created.
        """
        if not bodies:
            return 0

        async with self._scope(tenant_id) as scope:
            store_id = scope.require_tenant()
            ids = [body.id for body in bodies if body.id]
            existing: Dict[str, Product] = {}
            if ids:
                stmt = scope.scoped(select(Product).where(Product.id.in_(ids)), Product).with_for_update()
                existing = {p.id: p for p in (await scope.session.execute(stmt)).scalars().all()}

            new_rows = [body for body in bodies if body.id not in existing]
            if new_rows:
                await ensure_can_create(scope, len(new_rows))

            for body in bodies:
                current = existing.get(body.id)
                if current is not None:
                    current.name = body.name
                    current.price = body.price
                    continue
                await self._check_category(scope, body.category_id)
                values = body.column_values()
                if body.id:
                    values["id"] = body.id
                scope.session.add(Product(
                    store_id=store_id,
                    stock=body.resolved_stock(self.default_stock),
                    variants_stock=body.variants_stock,
                    **values,
                ))

            await self._flush(scope, "Failed to import products")
            scope.after_commit(lambda: self.invalidate(store_id))

        logger.info("Seeded %d products (%d updated) for store %s",
                    len(new_rows), len(bodies) - len(new_rows), store_id)
        return len(new_rows)

    async def track_view(self, tenant_id: Optional[str], product_id: str) -> bool:
        return await self._increment_counter(tenant_id, product_id, Product.views)

    async def track_click(self, tenant_id: Optional[str], product_id: str) -> bool:
        return await self._increment_counter(tenant_id, product_id, Product.clicks)

    async def _increment_counter(self, tenant_id: Optional[str], product_id: str, column) -> bool:
        # Counters are not part of the cached read model, so no invalidation
        async with self._scope(tenant_id) as scope:
            stmt = (
                scope.scoped(update(Product).where(Product.id == product_id), Product)
                .values({column: column + 1, Product.updated_at: Product.updated_at})
                .execution_options(synchronize_session=False)
            )
            result = await scope.session.execute(stmt)
            return result.rowcount > 0

    async def _check_category(self, scope: TenantScope, category_id: Optional[str]) -> None:
        if not category_id:
            return
        stmt = scope.scoped(select(Category.id).where(Category.id == category_id), Category)
        if (await scope.session.execute(stmt)).scalar_one_or_none() is None:
            raise ProductCreationError(f"Category {category_id} not found")

    async def _flush(self, scope: TenantScope, message: str) -> None:
        try:
            await scope.session.flush()
        except IntegrityError as e:
            raise ProductCreationError(f"{message}: {e.orig}") from e

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------
    async def check_stock(self, tenant_id: Optional[str], items: List[StockItemRequest]) -> StockCheckResult:
        """Advisory availability check. Reserves nothing."""
        if not items:
            return StockCheckResult(valid=True)

        async with self._scope(tenant_id) as scope:
            ids = sorted({item.product_id for item in items})
            stmt = scope.scoped(select(Product).where(Product.id.in_(ids)), Product)
            products = {p.id: p for p in (await scope.session.execute(stmt)).scalars().all()}

        errors: List[str] = []
        stock_info: List[StockItemInfo] = []
        for item in items:
            product = products.get(item.product_id)
            if product is None:
                errors.append(f"Product not found: {item.product_id}")
                stock_info.append(StockItemInfo(
                    product_id=item.product_id, requested=item.quantity, available=0, sufficient=False,
                ))
                continue

            name = product.name
            available = product.stock
            if product.variants_stock and not item.variant:
                errors.append(f'Variant required for "{name}"')
                stock_info.append(StockItemInfo(
                    product_id=item.product_id, requested=item.quantity, available=available, sufficient=False,
                ))
                continue
            if item.variant and product.variants_stock:
                available = min(product.variants_stock.get(item.variant, 0), product.stock)
                name = f"{product.name} ({item.variant})"

            sufficient = available >= item.quantity
            if not sufficient:
                errors.append(
                    f'Insufficient stock for "{name}": available {available}, requested {item.quantity}'
                )
            stock_info.append(StockItemInfo(
                product_id=item.product_id, requested=item.quantity, available=available, sufficient=sufficient,
            ))

        return StockCheckResult(valid=not errors, errors=errors, stock_info=stock_info)

    async def decrement_stock(
        self,
        tenant_id: Optional[str],
        product_id: str,
        quantity: int,
        variant: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> StockDecrement:
        """
        Take ``quantity`` units of one product. The returned StockDecrement is
        truthy only when the stock was taken; rejected requests change nothing.
        """
        if quantity <= 0:
            raise ValueError("Quantity must be a positive integer")

        async with self._scope(tenant_id) as scope:
            if variant:
                result, sold = await self._decrement_variant(scope, product_id, quantity, variant)
            else:
                result, sold = await self._decrement_plain(scope, product_id, quantity)
            if sold is not None:
                await self._after_sale(scope, [sold], order_id)

        if result:
            logger.info("Stock decremented: store=%s product=%s qty=%d remaining=%s",
                        tenant_id, product_id, quantity, result.remaining)
        else:
            logger.info("Stock decrement rejected: store=%s product=%s qty=%d outcome=%s",
                        tenant_id, product_id, quantity, result.outcome.value)
        return result

    async def _decrement_plain(
        self, scope: TenantScope, product_id: str, quantity: int
    ) -> Tuple[StockDecrement, Optional[_Sold]]:
        stmt = (
            update(Product)
            .where(
                Product.id == product_id,
                Product.stock >= quantity,
                Product.variants_stock.is_(None),
                scope.tenant_clause(Product),
            )
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        result = await scope.session.execute(stmt)

        # Read back in the same transaction; on success the row is still locked by the UPDATE
        row = (await scope.session.execute(
            scope.scoped(
                select(Product.name, Product.stock, Product.variants_stock).where(Product.id == product_id),
                Product,
            )
        )).one_or_none()

        if result.rowcount == 1:
            return (
                StockDecrement(outcome=DecrementOutcome.APPLIED, product_id=product_id,
                               requested=quantity, remaining=row.stock),
                _Sold(product_id, row.name, row.stock + quantity, row.stock),
            )

        if row is None:
            outcome, remaining = DecrementOutcome.NOT_FOUND, None
        elif row.variants_stock:
            outcome, remaining = DecrementOutcome.VARIANT_REQUIRED, row.stock
        else:
            outcome, remaining = DecrementOutcome.INSUFFICIENT_STOCK, row.stock
        return StockDecrement(outcome=outcome, product_id=product_id, requested=quantity, remaining=remaining), None

    async def _decrement_variant(
        self, scope: TenantScope, product_id: str, quantity: int, variant: str
    ) -> Tuple[StockDecrement, Optional[_Sold]]:
        product = await self._fetch(scope, product_id, lock=True)
        if product is None:
            return StockDecrement(outcome=DecrementOutcome.NOT_FOUND, product_id=product_id,
                                  requested=quantity, variant=variant), None
        if not product.variants_stock:
            return await self._decrement_plain(scope, product_id, quantity)

        available = product.variants_stock.get(variant)
        if available is None or available < quantity or product.stock < quantity:
            return StockDecrement(outcome=DecrementOutcome.INSUFFICIENT_STOCK, product_id=product_id,
                                  requested=quantity, variant=variant, remaining=available or 0), None

        previous = product.stock
        variants = dict(product.variants_stock)
        variants[variant] = available - quantity
        product.variants_stock = variants
        product.stock = previous - quantity
        await scope.session.flush()

        return (
            StockDecrement(outcome=DecrementOutcome.APPLIED, product_id=product_id, requested=quantity,
                           variant=variant, remaining=variants[variant]),
            _Sold(product_id, product.name, previous, product.stock, variant, variants[variant]),
        )

    async def batch_decrement_stock(
        self,
        tenant_id: Optional[str],
        items: List[StockItemRequest],
        order_id: Optional[str] = None,
    ) -> BatchDecrementResult:
        """
        All-or-nothing decrement of several products (one order).

        Rows are locked in id order so concurrent batches cannot deadlock. If
        any row cannot be satisfied nothing is written and ``failures`` names
        every unsatisfied row.
        """
        if not items:
            return BatchDecrementResult(applied=True)

        requested = _merge_items(items)
        try:
            async with self._scope(tenant_id) as scope:
                failures, sold, totals, variant_updates = await self._plan_batch(scope, requested)
                if failures:
                    result = BatchDecrementResult(applied=False, failures=failures)
                else:
                    await self._apply_batch(scope, totals, variant_updates)
                    await self._after_sale(scope, sold, order_id)
                    result = BatchDecrementResult(applied=True)
        except _BatchConflict:
            logger.warning("Batch decrement for store %s lost a race; rolled back", tenant_id)
            result = BatchDecrementResult(applied=False, failures=[
                StockShortfall(product_id=pid, requested=qty, variant=variant,
                               reason=DecrementOutcome.INSUFFICIENT_STOCK)
                for (pid, variant), qty in requested.items()
            ])

        if result:
            logger.info("Batch decrement applied: store=%s products=%d order=%s",
                        tenant_id, len({pid for pid, _ in requested}), order_id)
        else:
            logger.info("Batch decrement rejected: store=%s failures=%d", tenant_id, len(result.failures))
        return result

    async def _plan_batch(self, scope: TenantScope, requested: Dict[Tuple[str, Optional[str]], int]):
        ids = sorted({pid for pid, _ in requested})
        stmt = (
            scope.scoped(select(Product).where(Product.id.in_(ids)), Product)
            .order_by(Product.id)
            .with_for_update()
        )
        products = {p.id: p for p in (await scope.session.execute(stmt)).scalars().all()}

        failures: List[StockShortfall] = []
        totals: Dict[str, int] = {}
        variants: Dict[str, Dict[str, int]] = {}
        sold_variants: Dict[str, List[Tuple[str, int]]] = {}

        for (pid, variant), qty in requested.items():
            product = products.get(pid)
            if product is None:
                failures.append(StockShortfall(product_id=pid, requested=qty, variant=variant,
                                               reason=DecrementOutcome.NOT_FOUND))
                continue
            totals[pid] = totals.get(pid, 0) + qty
            if not product.variants_stock:
                continue
            if not variant:
                failures.append(StockShortfall(product_id=pid, requested=qty, available=product.stock,
                                               reason=DecrementOutcome.VARIANT_REQUIRED))
                continue
            counts = variants.setdefault(pid, dict(product.variants_stock))
            available = counts.get(variant)
            if available is None or available < qty:
                failures.append(StockShortfall(product_id=pid, requested=qty, available=available or 0,
                                               variant=variant, reason=DecrementOutcome.INSUFFICIENT_STOCK))
                continue
            counts[variant] = available - qty
            sold_variants.setdefault(pid, []).append((variant, counts[variant]))

        failed_ids = {f.product_id for f in failures}
        for pid, total in totals.items():
            product = products[pid]
            if pid not in failed_ids and product.stock < total:
                failures.append(StockShortfall(product_id=pid, requested=total, available=product.stock,
                                               reason=DecrementOutcome.INSUFFICIENT_STOCK))

        sold: List[_Sold] = []
        for pid, total in totals.items():
            product = products[pid]
            new_stock = product.stock - total
            lines = sold_variants.get(pid) or [(None, None)]
            for variant, remaining in lines:
                sold.append(_Sold(pid, product.name, product.stock, new_stock, variant, remaining))
        return failures, sold, totals, variants

    async def _apply_batch(
        self,
        scope: TenantScope,
        totals: Dict[str, int],
        variant_updates: Dict[str, Dict[str, int]],
    ) -> None:
        quantity = case(totals, value=Product.id)
        values = {Product.stock: Product.stock - quantity}
        if variant_updates:
            values[Product.variants_stock] = case(
                {pid: literal(counts, type_=JSONType) for pid, counts in variant_updates.items()},
                value=Product.id,
                else_=Product.variants_stock,
            )
        stmt = (
            update(Product)
            .where(Product.id.in_(list(totals)), Product.stock >= quantity, scope.tenant_clause(Product))
            .values(values)
            .execution_options(synchronize_session=False)
        )
        result = await scope.session.execute(stmt)
        if result.rowcount != len(totals):
            raise _BatchConflict()

    async def set_stock(
        self,
        tenant_id: Optional[str],
        product_id: str,
        new_stock: int,
        reason: str = MovementReason.MANUAL_UPDATE.value,
        user_id: Optional[str] = None,
    ) -> StockMovementRead:
        """Absolute stock set (restock, stocktake correction) with a movement record."""
        if new_stock < 0:
            raise ValueError("Stock must be a non-negative integer")

        async with self._scope(tenant_id) as scope:
            store_id = scope.require_tenant()
            product = await self._fetch(scope, product_id, lock=True)
            if product is None:
                raise ProductNotFoundError(product_id)

            previous = product.stock
            product.stock = new_stock
            if product.variants_stock and sum(product.variants_stock.values()) != new_stock:
                product.variants_stock = None

            movement = StockMovement(
                store_id=store_id,
                product_id=product_id,
                delta=new_stock - previous,
                previous_stock=previous,
                new_stock=new_stock,
                reason=reason,
                user_id=user_id,
            )
            scope.session.add(movement)
            await scope.session.flush()
            scope.after_commit(lambda: self.invalidate(store_id))
            result = StockMovementRead.from_orm_model(movement)

        logger.info("Stock set: store=%s product=%s %d -> %d (%s)", store_id, product_id, previous, new_stock, reason)
        return result

    # ------------------------------------------------------------------
    # Sale side effects (same transaction; delivery after commit)
    # ------------------------------------------------------------------
    async def _after_sale(self, scope: TenantScope, sold: List[_Sold], order_id: Optional[str]) -> None:
        store_id = scope.require_tenant()

        recorded = set()
        for line in sold:
            if line.product_id in recorded:
                continue
            recorded.add(line.product_id)
            scope.session.add(StockMovement(
                store_id=store_id,
                product_id=line.product_id,
                delta=line.new_stock - line.previous_stock,
                previous_stock=line.previous_stock,
                new_stock=line.new_stock,
                reason=MovementReason.SALE.value,
                order_id=order_id,
            ))

        scope.after_commit(lambda: self.invalidate(store_id))

        if self.dispatcher is None:
            return
        threshold = await read_low_stock_threshold(scope, self.default_threshold)
        low = list(_low_stock_lines(sold, threshold))
        if not low:
            return

        recipient = (await scope.session.execute(
            select(Store.owner_email).where(Store.id == store_id)
        )).scalar_one_or_none()
        alert = LowStockAlert(store_id=store_id, recipient=recipient, products=low, threshold=threshold)
        scope.after_commit(lambda: self.dispatcher.dispatch(alert))


def _merge_items(items: Iterable[StockItemRequest]) -> Dict[Tuple[str, Optional[str]], int]:
    merged: Dict[Tuple[str, Optional[str]], int] = {}
    for item in items:
        key = (item.product_id, item.variant or None)
        merged[key] = merged.get(key, 0) + item.quantity
    return merged


def _low_stock_lines(sold: Iterable[_Sold], threshold: int) -> Iterable[LowStockProduct]:
    seen = set()
    for line in sold:
        if line.variant is not None and line.variant_remaining is not None and line.variant_remaining <= threshold:
            yield LowStockProduct(id=line.product_id, name=line.name, stock=line.variant_remaining,
                                  variant=line.variant)
        elif line.new_stock <= threshold and line.product_id not in seen:
            seen.add(line.product_id)
            yield LowStockProduct(id=line.product_id, name=line.name, stock=line.new_stock)
