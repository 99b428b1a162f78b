"""
In-process TTL cache for tenant-scoped reads.

Keys are structured (store id, resource, query shape) rather than strings, so
invalidating ``store 1`` can never touch ``store 10``. Each (store, resource)
namespace and each store carries a generation counter that is bumped on every
invalidation; a loader that started before an invalidation is not allowed to
write its (possibly stale) result back.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from storecore.core.config import get_settings

logger = logging.getLogger(__name__)


class CacheTTL:
    """TTL presets in seconds."""
    SHORT = 30
    MEDIUM = 120
    LONG = 300
    HOUR = 3600


def freeze(value: Any) -> Any:
    """Turn a filter value into a hashable, order-independent form."""
    if isinstance(value, dict):
        return tuple(sorted((str(k), freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return tuple(sorted(freeze(v) for v in value))
    return value


@dataclass(frozen=True)
class CacheKey:
    tenant_id: str
    resource: str
    shape: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def build(cls, tenant_id: str, resource: str, **params: Any) -> "CacheKey":
        shape = tuple(sorted((name, freeze(value)) for name, value in params.items() if value is not None))
        return cls(tenant_id, resource, shape)

    @property
    def namespace(self) -> Tuple[str, str]:
        return self.tenant_id, self.resource


@dataclass(frozen=True)
class CachePrefix:
    """Everything cached for a store, or for one resource of a store."""
    tenant_id: str
    resource: Optional[str] = None

    def matches(self, key: CacheKey) -> bool:
        if key.tenant_id != self.tenant_id:
            return False
        return self.resource is None or key.resource == self.resource


@dataclass
class _Entry:
    value: Any
    expires_at: float


@dataclass
class _Generations:
    namespaces: Dict[Tuple[str, str], int] = field(default_factory=dict)
    tenants: Dict[str, int] = field(default_factory=dict)
    epoch: int = 0

    def snapshot(self, key: CacheKey) -> Tuple[int, int, int]:
        return (
            self.namespaces.get(key.namespace, 0),
            self.tenants.get(key.tenant_id, 0),
            self.epoch,
        )


class CacheService:
    def __init__(
        self,
        max_entries: Optional[int] = None,
        default_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.max_entries = max_entries if max_entries is not None else settings.CACHE_MAX_ENTRIES
        self.default_ttl = default_ttl if default_ttl is not None else settings.PRODUCT_CACHE_TTL
        self._clock = clock
        self._entries: Dict[CacheKey, _Entry] = {}
        self._generations = _Generations()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    # --- reads ---

    def get(self, key: CacheKey) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                logger.debug("Cache miss %s", key)
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                self._misses += 1
                logger.debug("Cache expired %s", key)
                return None
            self._hits += 1
            logger.debug("Cache hit %s", key)
            return entry.value

    async def get_or_set(
        self,
        key: CacheKey,
        ttl: Optional[float],
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Return the cached value for ``key`` or load, store and return it.

        The loaded value is only stored when no invalidation touched the key
        while ``loader`` ran. Loader errors propagate and nothing is cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        with self._lock:
            generation = self._generations.snapshot(key)

        value = await loader()

        with self._lock:
            if self._generations.snapshot(key) != generation:
                logger.debug("Discarding load for %s: namespace invalidated while loading", key)
                return value
            self._store(key, value, ttl)
        return value

    # --- writes ---

    def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._store(key, value, ttl)

    def _store(self, key: CacheKey, value: Any, ttl: Optional[float]) -> None:
        now = self._clock()
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._purge_expired(now)
            if len(self._entries) >= self.max_entries:
                victim = min(self._entries.items(), key=lambda kv: kv[1].expires_at)[0]
                del self._entries[victim]
        ttl = self.default_ttl if ttl is None else ttl
        self._entries[key] = _Entry(value=value, expires_at=now + ttl)

    def delete(self, key: CacheKey) -> None:
        with self._lock:
            self._bump_namespace(key.namespace)
            self._entries.pop(key, None)

    def delete_by_prefix(self, prefix: Union[CachePrefix, CacheKey]) -> int:
        """Drop every entry under ``prefix``. Returns how many entries were removed."""
        if isinstance(prefix, CacheKey):
            prefix = CachePrefix(prefix.tenant_id, prefix.resource)

        with self._lock:
            if prefix.resource is None:
                tenants = self._generations.tenants
                tenants[prefix.tenant_id] = tenants.get(prefix.tenant_id, 0) + 1
            else:
                self._bump_namespace((prefix.tenant_id, prefix.resource))

            doomed = [key for key in self._entries if prefix.matches(key)]
            for key in doomed:
                del self._entries[key]

        if doomed:
            logger.info("Invalidated %d cache entries for %s", len(doomed), prefix)
        return len(doomed)

    def invalidate_tenant(self, tenant_id: str) -> int:
        return self.delete_by_prefix(CachePrefix(tenant_id))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.epoch += 1
        logger.info("Cache cleared")

    def _bump_namespace(self, namespace: Tuple[str, str]) -> None:
        namespaces = self._generations.namespaces
        namespaces[namespace] = namespaces.get(namespace, 0) + 1

    # --- housekeeping ---

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            self._purge_expired(self._clock())
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "keys": list(self._entries.keys()),
            }


@lru_cache()
def get_cache_service() -> CacheService:
    """Process-wide cache instance."""
    return CacheService()
