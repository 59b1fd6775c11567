"""Fixed-window rate limiting for availability, reservation and cleanup calls.

Counters live behind a small ``RateLimitStore`` port. The default store sits
on the shared cache, so counters survive across workers when Redis is in
use, and expire with their window. Limits are configured per scope with
``<SCOPE>_RATE_LIMIT=<attempts>/<window_seconds>``.

The limiter fails open: when the store misbehaves the request is allowed and
the error is logged.
"""

import math
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog

from inventory.utils.cache import get_cache, sanitize_key_part

logger = structlog.get_logger(__name__)

DEFAULT_LIMITS = {
    "availability": (60, 60),
    "reserve": (10, 60),
    "cleanup": (5, 60),
    "stock-update": (10, 60),
}


class RateLimitStore(ABC):
    @abstractmethod
    def get(self, key) -> dict | None:
        """Return the counter record for ``key``."""

    @abstractmethod
    def set(self, key, record: dict, ttl: int) -> None:
        """Persist the counter record until ``ttl`` seconds from now."""

    @abstractmethod
    def delete(self, key) -> None:
        """Forget the counter for ``key``."""

    @abstractmethod
    def sweep(self) -> int:
        """Drop expired counters; returns how many were removed."""


class CacheRateLimitStore(RateLimitStore):
    """Counters stored in the cache layer, namespaced under ``ratelimit:``."""

    def __init__(self, cache=None):
        self._cache = cache

    @property
    def cache(self):
        return self._cache if self._cache is not None else get_cache()

    def _key(self, key):
        return f"ratelimit:{key}"

    def get(self, key):
        return self.cache.get(self._key(key))

    def set(self, key, record, ttl):
        self.cache.set(self._key(key), record, max(1, ttl))

    def delete(self, key):
        self.cache.delete(self._key(key))

    def sweep(self):
        return self.cache.sweep()


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int
    reset_at: float


class FixedWindowRateLimiter:
    SWEEP_EVERY = 500

    def __init__(self, store: RateLimitStore, max_attempts: int, window_seconds: int, scope: str = "default"):
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.scope = scope
        self._checks = 0

    def _key(self, caller_key):
        return f"{self.scope}:{sanitize_key_part(caller_key)}"

    def check(self, caller_key) -> RateLimitDecision:
        """Count one attempt for ``caller_key`` and decide whether it may proceed."""
        now = time.time()
        key = self._key(caller_key)

        try:
            self._maybe_sweep()

            record = self.store.get(key)
            if not record or record.get("reset_at", 0) <= now:
                record = {"count": 0, "reset_at": now + self.window_seconds}

            reset_at = record["reset_at"]
            if record["count"] >= self.max_attempts:
                retry_after = max(1, math.ceil(reset_at - now))
                logger.info(
                    "Rate limit exceeded",
                    scope=self.scope,
                    caller=caller_key,
                    retry_after=retry_after,
                )
                return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after, reset_at=reset_at)

            record["count"] += 1
            self.store.set(key, record, math.ceil(reset_at - now))
            return RateLimitDecision(
                allowed=True,
                remaining=self.max_attempts - record["count"],
                retry_after=0,
                reset_at=reset_at,
            )
        except Exception as exc:
            logger.warning("Rate limiter unavailable, allowing request", scope=self.scope, error=str(exc))
            return RateLimitDecision(
                allowed=True,
                remaining=self.max_attempts,
                retry_after=0,
                reset_at=now + self.window_seconds,
            )

    def reset(self, caller_key) -> None:
        self.store.delete(self._key(caller_key))

    def _maybe_sweep(self):
        self._checks += 1
        if self._checks % self.SWEEP_EVERY == 0:
            removed = self.store.sweep()
            logger.debug("Rate limit counters swept", scope=self.scope, removed=removed)


def caller_key(client_host: str | None, session_id: str | None = None) -> str:
    """Key a caller by IP, narrowed by session id when one is supplied."""
    host = client_host or "unknown"
    return f"{host}:{session_id}" if session_id else host


def _parse_limit(scope):
    env_name = f"{scope.upper().replace('-', '_')}_RATE_LIMIT"
    raw = os.environ.get(env_name)
    if not raw:
        return DEFAULT_LIMITS[scope]

    try:
        attempts, window = raw.split("/", 1)
        return int(attempts), int(window)
    except ValueError:
        logger.warning("Invalid rate limit setting, using default", setting=env_name, value=raw)
        return DEFAULT_LIMITS[scope]


_limiters = {}


def get_rate_limiter(scope: str) -> FixedWindowRateLimiter:
    """Return the limiter for ``scope`` (one singleton per scope)."""
    if scope not in DEFAULT_LIMITS:
        raise ValueError(f"Unknown rate limit scope: {scope}")

    if scope not in _limiters:
        max_attempts, window_seconds = _parse_limit(scope)
        _limiters[scope] = FixedWindowRateLimiter(
            CacheRateLimitStore(),
            max_attempts=max_attempts,
            window_seconds=window_seconds,
            scope=scope,
        )
    return _limiters[scope]


def reset_rate_limiters():
    """Reset every limiter singleton (useful for testing)."""
    _limiters.clear()
