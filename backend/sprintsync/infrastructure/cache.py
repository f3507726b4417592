"""
Process-local read-through cache.

Entries are advisory: the entity store is always the source of truth, so
dropping any entry at any time only costs a recompute. Keys follow
`entity:id[:query-hash]`, e.g. `sprint:<id>` or `project:<id>:sprints:<hash>`.
"""

import asyncio
import hashlib
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)

_MISSING = object()


def sprint_key(sprint_id: str) -> str:
    return f"sprint:{sprint_id}"


def task_key(task_id: str) -> str:
    return f"task:{task_id}"


def project_sprints_pattern(project_id: str) -> str:
    return f"project:{project_id}:sprints*"


def project_sprints_key(project_id: str, query: Dict[str, Any]) -> str:
    """Key for one filtered/paginated sprint listing of a project."""
    digest = hashlib.sha1(
        json.dumps(query, sort_keys=True, default=str).encode("utf-8")
    ).hexdigest()[:16]
    return f"project:{project_id}:sprints:{digest}"


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class ReadThroughCache:
    """
    Key/value cache with per-entry TTL, wildcard invalidation and
    fetch-or-compute semantics.

    Args:
        default_ttl: TTL in seconds used when a caller passes none.
        single_flight: When True, concurrent misses on one key share a
            single compute call. When False each miss computes on its own
            and the last write wins.
        timer: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        default_ttl: float = 300,
        single_flight: bool = False,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.single_flight = single_flight
        self._timer = timer
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        # Bumped on every invalidation; a compute that started in an older
        # epoch does not populate the cache.
        self._epoch = 0
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for key, or default when absent or expired."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(value=value, expires_at=self._timer() + ttl)

    def _lookup(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        if entry.expires_at <= self._timer():
            del self._entries[key]
            return _MISSING
        return entry.value

    async def get_or_compute(
        self,
        key: str,
        ttl: Optional[float],
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Return the cached value for key, computing and storing it on a miss."""
        value = self._lookup(key)
        if value is not _MISSING:
            self.hits += 1
            return value

        self.misses += 1
        if not self.single_flight:
            return await self._compute_and_store(key, ttl, compute)

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await self._compute_and_store(key, ttl, compute)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so a future nobody joined does not log a warning
            future.exception()
            raise
        else:
            future.set_result(value)
            return value
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]

    async def _compute_and_store(self, key, ttl, compute) -> Any:
        epoch = self._epoch
        value = await compute()
        if epoch == self._epoch:
            self.set(key, value, ttl)
        else:
            logger.debug("cache_store_skipped", key=key, reason="invalidated_during_compute")
        return value

    def invalidate(self, pattern: str) -> int:
        """
        Drop one key, or every held key matching a `*` wildcard pattern.

        Wildcards match from the start of the key, so
        `project:42:sprints*` drops every listing cached for project 42.
        Returns the number of entries removed.
        """
        self._epoch += 1
        if "*" in pattern:
            regex = re.compile(".*".join(re.escape(part) for part in pattern.split("*")))
            keys = [k for k in self._entries if regex.match(k)]
            inflight = [k for k in self._inflight if regex.match(k)]
        else:
            keys = [pattern] if pattern in self._entries else []
            inflight = [pattern] if pattern in self._inflight else []

        for key in keys:
            del self._entries[key]
        # Later callers must not join a compute that began before this point
        for key in inflight:
            del self._inflight[key]

        logger.debug("cache_invalidated", pattern=pattern, removed=len(keys))
        return len(keys)

    def clear(self) -> None:
        """Drop all entries."""
        self._epoch += 1
        self._entries.clear()
        self._inflight.clear()
        logger.info("cache_cleared")

    def purge_expired(self) -> int:
        now = self._timer()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "single_flight": self.single_flight,
        }
