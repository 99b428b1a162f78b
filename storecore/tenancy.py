"""
Tenant-scoped unit of work.

Every path that touches store-owned tables runs inside ``tenant_scope``: one
session, one transaction, and an explicit ``TenantScope`` handle that carries
the store id. Statements are filtered by ``store_id`` through the handle; on
PostgreSQL the store id is additionally bound to the transaction so the
row-level security policies apply.

    async with tenant_scope(store_id) as scope:
        stmt = scope.scoped(select(Product), Product)
        rows = (await scope.session.execute(stmt)).scalars().all()
        scope.after_commit(lambda: cache.delete_by_prefix(...))
"""

import inspect
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, List, Optional

from sqlalchemy import false, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storecore.core.exceptions import TenantRequiredError
from storecore.database import get_sessionmaker

logger = logging.getLogger(__name__)

SET_TENANT_SQL = text("SELECT set_config('app.current_store_id', :tenant_id, true)")


class TenantScope:
    """Handle passed to every storage call made on behalf of one store."""

    def __init__(self, session: AsyncSession, tenant_id: Optional[str]):
        self.session = session
        self.tenant_id = tenant_id or None
        self._after_commit: List[Callable[[], Any]] = []

    @property
    def has_tenant(self) -> bool:
        return self.tenant_id is not None

    def require_tenant(self) -> str:
        if not self.tenant_id:
            raise TenantRequiredError("A store id is required for this operation")
        return self.tenant_id

    def tenant_clause(self, model):
        """``model.store_id == tenant``, or a predicate matching nothing when no store is bound."""
        if not self.tenant_id:
            return false()
        return model.store_id == self.tenant_id

    def scoped(self, stmt, model):
        return stmt.where(self.tenant_clause(model))

    def after_commit(self, callback: Callable[[], Any]) -> None:
        """Run ``callback`` once the transaction has committed. Dropped on rollback."""
        self._after_commit.append(callback)

    async def _run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.error("After-commit callback failed for store %s", self.tenant_id, exc_info=True)


@asynccontextmanager
async def tenant_scope(
    tenant_id: Optional[str],
    *,
    session_factory: Optional[async_sessionmaker] = None,
) -> AsyncIterator[TenantScope]:
    """
    Open a transaction bound to ``tenant_id``.

    Commits when the block exits normally. Any exception, including
    cancellation, rolls the whole transaction back and propagates.
    After-commit callbacks run only after a successful commit.
    """
    factory = session_factory or get_sessionmaker()
    async with factory() as session:
        scope = TenantScope(session, tenant_id)
        async with session.begin():
            if scope.has_tenant and session.get_bind().dialect.name == "postgresql":
                await session.execute(SET_TENANT_SQL, {"tenant_id": scope.tenant_id})
            yield scope
        await scope._run_after_commit()
