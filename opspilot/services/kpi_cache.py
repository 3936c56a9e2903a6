"""
KPI Dashboard Cache

Provides a cache component with:
  - Fixed default TTL (24 h) per entry
  - Explicit flush of every entry (scheduled + manual refresh)
  - Hit / miss / key counters for operational visibility

Uses Redis in production (via KPI_CACHE_URL or REDIS_URL), falls back to
a simple in-memory dict for development/testing.

One instance is built per Flask application in ``init_kpi_cache`` and
stored on ``app.extensions["kpi_cache"]``; handlers and jobs receive it
from there instead of from a module global.

Backend failures never break a dashboard: ``get`` degrades to a miss,
``set`` to a no-op and ``flush_all`` to a logged ``False``.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable

import redis
from flask import current_app

from opspilot.services.kpi_types import ScopeKind

logger = logging.getLogger(__name__)

DEFAULT_TTL = 86400   # 24 hours
DEFAULT_PREFIX = "kpi:"


# ── Key builders ─────────────────────────────────────────────────────────

def org_kpi_key(organization_id):
    return f"orgKPI-{organization_id}"


def team_kpi_key(organization_id, scope):
    """Key for a team dashboard; *scope* is a ``TeamScope``."""
    if scope.kind is ScopeKind.WORKFLOW:
        return f"teamKPI-{scope.workflow_id}"
    return f"orgTeamKPI-{organization_id}"


# ── In-memory backend ────────────────────────────────────────────────────

class _MemoryBackend:
    """Dict cache for dev/testing, mirroring the Redis calls we use."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._store: dict[str, tuple[str, float]] = {}  # key → (value_json, expire_ts)
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key):
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            val, expires = entry
            if self._clock() >= expires:
                self._store.pop(key, None)
                return None
            return val

    def setex(self, key, ttl_seconds, value):
        with self._lock:
            self._store[key] = (value, self._clock() + ttl_seconds)

    def delete(self, *keys):
        with self._lock:
            for k in keys:
                self._store.pop(k, None)

    def scan_iter(self, match=None):
        """Live keys matching a 'prefix*' pattern; expired entries are skipped, not purged."""
        now = self._clock()
        with self._lock:
            keys = [k for k, (_, expires) in self._store.items() if now < expires]
        if match and match.endswith("*"):
            prefix = match[:-1]
            return [k for k in keys if k.startswith(prefix)]
        if match:
            return [k for k in keys if k == match]
        return keys

    def ping(self):
        return True


def _build_backend(url: str | None):
    """Connect to Redis, or fall back to memory for ``memory://`` / unreachable hosts."""
    if url and not url.startswith("memory://"):
        try:
            backend = redis.from_url(url, decode_responses=True)
            backend.ping()
            logger.info("KPI cache: using Redis at %s", url.split("@")[-1])
            return backend
        except redis.RedisError as exc:
            logger.warning("Redis unavailable (%s) — falling back to memory cache", exc)
    return _MemoryBackend()


class KpiCache:
    """Scope-keyed cache for computed dashboard payloads.

    There is no per-key locking: two concurrent misses for the same key may
    both compute and both write; the last write wins.
    """

    def __init__(self, backend=None, *, default_ttl: int = DEFAULT_TTL,
                 prefix: str = DEFAULT_PREFIX):
        self._backend = backend if backend is not None else _MemoryBackend()
        self.default_ttl = default_ttl
        self.prefix = prefix
        self._hits = 0
        self._misses = 0
        self._counter_lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "KpiCache":
        url = config.get("KPI_CACHE_URL") or config.get("REDIS_URL")
        return cls(
            _build_backend(url),
            default_ttl=int(config.get("KPI_CACHE_TTL", DEFAULT_TTL)),
            prefix=config.get("KPI_CACHE_PREFIX", DEFAULT_PREFIX),
        )

    @property
    def backend_name(self) -> str:
        return "memory" if isinstance(self._backend, _MemoryBackend) else "redis"

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _count(self, hit: bool) -> None:
        with self._counter_lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    # ── Public API ───────────────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached payload, or None on miss, expiry or backend failure."""
        try:
            raw = self._backend.get(self._key(key))
        except Exception as exc:
            logger.warning("KPI cache read failed for %s: %s", key, exc,
                           extra={"cache_key": key})
            self._count(False)
            return None
        if raw is None:
            self._count(False)
            return None
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            self._count(False)
            return None
        self._count(True)
        return value

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* for *ttl* seconds (default TTL when omitted), replacing any entry."""
        ttl = self.default_ttl if ttl is None else ttl
        try:
            self._backend.setex(self._key(key), ttl, json.dumps(value))
        except Exception as exc:
            logger.warning("KPI cache write failed for %s: %s", key, exc,
                           extra={"cache_key": key})

    def flush_all(self) -> bool:
        """Evict every entry regardless of TTL. Best-effort: failures are logged."""
        try:
            keys = list(self._backend.scan_iter(match=f"{self.prefix}*"))
            if keys:
                self._backend.delete(*keys)
        except Exception as exc:
            logger.error("KPI cache flush failed: %s", exc)
            return False
        logger.info("KPI cache flushed (%d keys)", len(keys))
        return True

    def stats(self) -> dict:
        """Hit/miss/key counters. Reading stats never changes cache state."""
        try:
            keys = len(list(self._backend.scan_iter(match=f"{self.prefix}*")))
        except Exception as exc:
            logger.warning("KPI cache key count failed: %s", exc)
            keys = None
        with self._counter_lock:
            hits, misses = self._hits, self._misses
        return {
            "hits": hits,
            "misses": misses,
            "keys": keys,
            "backend": self.backend_name,
            "default_ttl": self.default_ttl,
        }

    def health_check(self) -> dict:
        """Return cache backend status."""
        try:
            self._backend.ping()
            return {"status": "ok", "backend": self.backend_name}
        except Exception as exc:
            return {"status": "error", "detail": str(exc)}


# ── Flask wiring ─────────────────────────────────────────────────────────

def init_kpi_cache(app) -> KpiCache:
    """Build the application's KPI cache and register it as an extension."""
    cache = KpiCache.from_config(app.config)
    app.extensions["kpi_cache"] = cache
    logger.info("KPI cache initialised: backend=%s ttl=%ss",
                cache.backend_name, cache.default_ttl)
    return cache


def get_kpi_cache(app=None) -> KpiCache:
    """Return the KPI cache bound to *app* (or the current app)."""
    app = app or current_app
    return app.extensions["kpi_cache"]
