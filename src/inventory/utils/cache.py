"""Short-TTL cache in front of availability and stock lookups.

The cache is an accelerator only: every failure is logged and swallowed,
and callers always fall back to reading the stores directly. ``RedisCache``
is the distributed backend; ``InMemoryCache`` is the per-process fallback
that ``FailoverCache`` switches to whenever Redis is unreachable.

The backend is chosen with ``CACHE_BACKEND`` (``memory`` or ``redis``).
"""

import json
import os
import re
import threading
import time
from abc import ABC, abstractmethod

import redis
import structlog

logger = structlog.get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^\w:.-]")


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------
def sanitize_key_part(value) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", str(value))


def stock_key(product_id, holder_id=None) -> str:
    return f"stock:{sanitize_key_part(product_id)}:{sanitize_key_part(holder_id or 'anonymous')}"


def availability_key(product_id, holder_id=None) -> str:
    return f"availability:{sanitize_key_part(product_id)}:{sanitize_key_part(holder_id or 'anonymous')}"


def product_key(product_id) -> str:
    return f"product:{sanitize_key_part(product_id)}"


def notification_key(product_id) -> str:
    return f"stock-update:{sanitize_key_part(product_id)}"


def invalidate_product(cache, product_id) -> None:
    """Drop every cached availability, stock and product entry for ``product_id``."""
    safe_id = sanitize_key_part(product_id)
    cache.clear(f"availability:{safe_id}:")
    cache.clear(f"stock:{safe_id}:")
    cache.delete(product_key(product_id))


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------
class CacheBackend(ABC):
    """Port implemented by every cache backend."""

    @abstractmethod
    def get(self, key):
        """Return the cached value, or None on a miss."""

    @abstractmethod
    def set(self, key, value, ttl: int) -> None:
        """Store a JSON-serializable value for ``ttl`` seconds."""

    @abstractmethod
    def delete(self, key) -> None:
        """Remove one key."""

    @abstractmethod
    def clear(self, prefix: str | None = None) -> None:
        """Remove every key, or every key starting with ``prefix``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend can currently serve requests."""

    def sweep(self) -> int:
        """Evict expired entries. Backends with native expiry have nothing to do."""
        return 0


class InMemoryCache(CacheBackend):
    def __init__(self, namespace: str = ""):
        self.namespace = namespace
        self._entries = {}
        self._lock = threading.Lock()

    def _key(self, key):
        return f"{self.namespace}:{key}" if self.namespace else key

    def get(self, key):
        full_key = self._key(key)
        with self._lock:
            entry = self._entries.get(full_key)
            if entry is None:
                return None

            value, expires_at = entry
            if expires_at <= time.monotonic():
                del self._entries[full_key]
                return None
            return json.loads(value)

    def set(self, key, value, ttl: int) -> None:
        expires_at = time.monotonic() + ttl
        with self._lock:
            self._entries[self._key(key)] = (json.dumps(value), expires_at)

    def delete(self, key) -> None:
        with self._lock:
            self._entries.pop(self._key(key), None)

    def clear(self, prefix: str | None = None) -> None:
        with self._lock:
            if prefix is None and not self.namespace:
                self._entries.clear()
                return

            full_prefix = self._key(prefix or "")
            for key in [k for k in self._entries if k.startswith(full_prefix)]:
                del self._entries[key]

    def is_available(self) -> bool:
        return True

    def sweep(self) -> int:
        now = time.monotonic()
        with self._lock:
            expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self):
        return len(self._entries)


class RedisCache(CacheBackend):
    """Redis-backed cache. Values are stored as JSON with ``SETEX``."""

    PING_INTERVAL = 30

    def __init__(self, client: redis.Redis, namespace: str = ""):
        self.client = client
        self.namespace = namespace
        self._available = None
        self._checked_at = 0.0

    @classmethod
    def from_url(cls, url: str, namespace: str = ""):
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        return cls(client, namespace=namespace)

    def _key(self, key):
        return f"{self.namespace}:{key}" if self.namespace else key

    def get(self, key):
        raw = self.client.get(self._key(key))
        return json.loads(raw) if raw is not None else None

    def set(self, key, value, ttl: int) -> None:
        self.client.setex(self._key(key), ttl, json.dumps(value))

    def delete(self, key) -> None:
        self.client.delete(self._key(key))

    def clear(self, prefix: str | None = None) -> None:
        pattern = f"{self._key(prefix or '')}*"
        batch = []
        for key in self.client.scan_iter(match=pattern, count=500):
            batch.append(key)
            if len(batch) >= 500:
                self.client.delete(*batch)
                batch = []
        if batch:
            self.client.delete(*batch)

    def is_available(self) -> bool:
        now = time.monotonic()
        if self._available is not None and now - self._checked_at < self.PING_INTERVAL:
            return self._available

        try:
            self._available = bool(self.client.ping())
        except redis.RedisError as exc:
            logger.warning("Redis unreachable, using in-process cache", error=str(exc))
            self._available = False
        self._checked_at = now
        return self._available

    def mark_unavailable(self) -> None:
        self._available = False
        self._checked_at = time.monotonic()


class FailoverCache(CacheBackend):
    """Route calls to ``primary`` while it is up, otherwise to ``fallback``.

    No cache error ever reaches the caller: reads degrade to a miss and writes
    to a no-op.
    """

    def __init__(self, primary: CacheBackend, fallback: CacheBackend | None = None):
        self.primary = primary
        self.fallback = fallback or InMemoryCache()

    def _active(self) -> CacheBackend:
        try:
            if self.primary.is_available():
                return self.primary
        except Exception as exc:
            logger.warning("Cache availability check failed", error=str(exc))
        return self.fallback

    def _failed(self, backend, operation, key, exc):
        logger.warning("Cache operation failed", operation=operation, key=key, error=str(exc))
        if backend is self.primary and hasattr(backend, "mark_unavailable"):
            backend.mark_unavailable()

    def get(self, key):
        backend = self._active()
        try:
            return backend.get(key)
        except Exception as exc:
            self._failed(backend, "get", key, exc)
            return None

    def set(self, key, value, ttl: int) -> None:
        backend = self._active()
        try:
            backend.set(key, value, ttl)
        except Exception as exc:
            self._failed(backend, "set", key, exc)

    def delete(self, key) -> None:
        # Entries may live in either backend after a failover, so drop both copies
        for backend in (self.primary, self.fallback):
            try:
                backend.delete(key)
            except Exception as exc:
                self._failed(backend, "delete", key, exc)

    def clear(self, prefix: str | None = None) -> None:
        for backend in (self.primary, self.fallback):
            try:
                backend.clear(prefix)
            except Exception as exc:
                self._failed(backend, "clear", prefix, exc)

    def is_available(self) -> bool:
        return True

    def sweep(self) -> int:
        swept = 0
        for backend in (self.primary, self.fallback):
            try:
                swept += backend.sweep()
            except Exception as exc:
                self._failed(backend, "sweep", None, exc)
        return swept

    @property
    def backend_name(self) -> str:
        return type(self._active()).__name__


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------
_cache_instance = None


def get_cache() -> CacheBackend:
    """Return the configured cache (singleton).

    Uses an in-process cache by default. Set CACHE_BACKEND=redis and
    REDIS_URL to put Redis in front, with the in-process cache as fallback.
    """
    global _cache_instance
    if _cache_instance is None:
        backend = os.environ.get("CACHE_BACKEND", "memory")
        namespace = os.environ.get("CACHE_NAMESPACE", "storefront")
        if backend == "memory":
            _cache_instance = InMemoryCache(namespace=namespace)
        elif backend == "redis":
            url = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
            _cache_instance = FailoverCache(
                RedisCache.from_url(url, namespace=namespace),
                InMemoryCache(namespace=namespace),
            )
        else:
            raise ValueError(f"Unknown cache backend: {backend}")
    return _cache_instance


def reset_cache():
    """Reset the cache singleton (useful for testing)."""
    global _cache_instance
    _cache_instance = None
