import logging

from fastapi import APIRouter, Request
from sqlalchemy import text

from storecore.database import get_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Basic health check with cache and notification queue state"""
    product_service = request.app.state.product_service
    dispatcher = request.app.state.dispatcher
    cache_stats = product_service.cache.stats()
    return {
        "status": "healthy",
        "service": "storecore",
        "cache": {k: cache_stats[k] for k in ("size", "max_entries", "hits", "misses")},
        "notifications": {
            "running": dispatcher.running if dispatcher else False,
            "queued": dispatcher.queue.qsize() if dispatcher else 0,
        },
    }


@router.get("/health/db")
async def database_health():
    """Check database connectivity"""
    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        return {"status": "unhealthy", "database": "error", "error": str(e)}
