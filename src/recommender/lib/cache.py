"""Short-lived per-user cache of computed recommendation lists, kept in Redis.

Entries are keyed by user and namespace (the request type: ``posts``,
``papers`` or ``mixed``) and written with ``SETEX``, so every worker sees
the same entries and Redis drops them when the TTL runs out. Lookups also
check ``computed_at + ttl`` against the clock and delete an entry that is
past it. Concurrent recomputations for the same user simply overwrite each
other.

A Redis failure on lookup or write is logged and treated as a miss.
``invalidate`` lets the failure propagate; the feedback ledger logs it.
"""

import logging
import math
import time
from collections.abc import Callable, Sequence

import redis.asyncio as redis
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from ..models import RecommendationScore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_NAMESPACE = "mixed"
NAMESPACES = ("posts", "papers", "mixed")

KEY_PREFIX = "recommendations"


class CacheEntry(BaseModel):
    user_id: str
    computed_at: float
    ttl: float
    limit: int = Field(0, description="Limit the payload was computed for")
    payload: list[RecommendationScore]

    def is_live(self, now: float) -> bool:
        return self.computed_at + self.ttl >= now

    def covers(self, limit: int) -> bool:
        """True when the payload answers a request for *limit* items.

        A list computed for a smaller limit is only complete if it came back
        short, meaning there was nothing more to recommend.
        """
        return limit <= self.limit or len(self.payload) < self.limit


def cache_key(user_id: str, namespace: str) -> str:
    return f"{KEY_PREFIX}:{namespace}:{user_id}"


class RecommendationCache:
    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = client
        self._ttl = ttl_seconds
        self._clock = clock

    async def get(self, user_id: str, namespace: str = DEFAULT_NAMESPACE) -> CacheEntry | None:
        key = cache_key(user_id, namespace)
        try:
            raw = await self._redis.get(key)
            if raw is None:
                return None
            entry = CacheEntry.model_validate_json(raw)
            if not entry.is_live(self._clock()):
                await self._redis.delete(key)
                return None
        except RedisError:
            logger.warning("Recommendation cache lookup failed for %s", user_id, exc_info=True)
            return None
        return entry

    async def put(
        self,
        user_id: str,
        payload: Sequence[RecommendationScore],
        ttl: float | None = None,
        namespace: str = DEFAULT_NAMESPACE,
        limit: int | None = None,
    ) -> CacheEntry:
        entry = CacheEntry(
            user_id=user_id,
            computed_at=self._clock(),
            ttl=self._ttl if ttl is None else ttl,
            limit=len(payload) if limit is None else limit,
            payload=list(payload),
        )
        try:
            await self._redis.set(
                cache_key(user_id, namespace),
                entry.model_dump_json(),
                ex=max(1, math.ceil(entry.ttl)),
            )
        except RedisError:
            logger.warning("Recommendation cache write failed for %s", user_id, exc_info=True)
        return entry

    async def invalidate(self, user_id: str) -> int:
        """Drop every namespace cached for *user_id*; returns how many were dropped."""
        dropped = await self._redis.delete(*(cache_key(user_id, ns) for ns in NAMESPACES))
        if dropped:
            logger.debug("Invalidated %d cached recommendation lists for %s", dropped, user_id)
        return dropped

    async def ping(self) -> bool:
        return bool(await self._redis.ping())
