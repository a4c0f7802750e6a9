"""
Short-lived cache for match results with single-flight computation.

Concurrent requests for the same key share one computation instead of each
running the matcher.
"""
import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple, Union

from skillmatch.models.models import MatchFilters
from skillmatch.utils.logging_config import get_logger

logger = get_logger(__name__)


def make_key(kind: str, source_id: str, filters: Optional[MatchFilters] = None, limit: int = 10, page: int = 1) -> Tuple:
    filters_json = (filters or MatchFilters()).model_dump_json()
    return (kind, source_id, filters_json, limit, page)


class MatchResultCache:
    """TTL cache keyed by (direction, source id, filters, limit, page)"""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 1024,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._inflight: Dict[Hashable, asyncio.Task] = {}
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_settings(cls, settings) -> "MatchResultCache":
        return cls(
            ttl_seconds=settings.cache_ttl_seconds,
            enabled=settings.cache_results,
            max_entries=settings.cache_max_entries,
        )

    async def get_or_compute(self, key: Hashable, compute: Callable[[], Union[Any, Awaitable[Any]]]) -> Any:
        if not self.enabled:
            return await self._call(compute)

        entry = self._entries.get(key)
        if entry is not None:
            expires_at, value = entry
            if expires_at > self._clock():
                self.hits += 1
                return value
            del self._entries[key]

        task = self._inflight.get(key)
        if task is None:
            self.misses += 1
            task = asyncio.ensure_future(self._fill(key, compute))
            self._inflight[key] = task
        else:
            logger.debug(f"Joining in-flight computation for {key!r}")
        # a cancelled waiter must not cancel the shared computation
        return await asyncio.shield(task)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    async def _fill(self, key: Hashable, compute) -> Any:
        try:
            value = await self._call(compute)
            self._sweep()
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            return value
        finally:
            self._inflight.pop(key, None)

    def _sweep(self) -> None:
        """Drop expired entries, then the soonest-expiring ones while at capacity."""
        now = self._clock()
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        overflow = len(self._entries) - self.max_entries + 1
        if overflow > 0:
            oldest = sorted(self._entries, key=lambda k: self._entries[k][0])[:overflow]
            for key in oldest:
                del self._entries[key]
            logger.debug(f"Evicted {len(oldest)} cached match results at capacity")

    @staticmethod
    async def _call(compute) -> Any:
        value = compute()
        if inspect.isawaitable(value):
            value = await value
        return value


class CachingMatcher:
    """
    Async front for a Matcher that serves repeated requests from the cache.

    Keys do not include the pool, so callers must invalidate (or rely on the
    TTL) when the profiles or requirements behind an id change.
    """

    def __init__(self, matcher, cache: Optional[MatchResultCache] = None):
        self.matcher = matcher
        self.cache = cache or MatchResultCache.from_settings(matcher.settings)

    async def match_entity_to_candidates(self, pool, entity_id: str, limit: int = 10,
                                         filters: Optional[MatchFilters] = None, page: int = 1):
        key = make_key("entity", entity_id, filters, limit, page)
        return await self.cache.get_or_compute(
            key, lambda: self.matcher.match_entity_to_candidates(pool, entity_id, limit=limit, filters=filters, page=page)
        )

    async def match_candidate_to_entities(self, pool, candidate_id: str, limit: int = 10,
                                          filters: Optional[MatchFilters] = None, page: int = 1):
        key = make_key("candidate", candidate_id, filters, limit, page)
        return await self.cache.get_or_compute(
            key, lambda: self.matcher.match_candidate_to_entities(pool, candidate_id, limit=limit, filters=filters, page=page)
        )
