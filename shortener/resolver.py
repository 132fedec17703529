"""Cache-aside short-code resolution with single-flight stampede protection.

Under a burst of concurrent misses on one hot code, exactly one request (the
lock owner) queries the Datastore; every other request polls the cache and
reuses the owner's answer.

Flow Diagram: resolve(code)
============================
::
    ┌─────────────┐
    │ GET short:  │
    │ <code>      │
    └──────┬──────┘
    HIT?  │
    ┌─────┴──────────────┐
    │ YES                │ NO
    ▼                    ▼
┌─────────┐      ┌──────────────┐
│ Return  │      │ SET NX EX    │
│ cached  │      │ lock:short:  │
└─────────┘      └──────┬───────┘
                 ACQUIRED?
          ┌─────────────┴─────────────┐
          │ YES (owner)               │ NO (follower)
          ▼                           ▼
  ┌───────────────┐          ┌─────────────────┐
  │ decode code,  │          │ sleep, re-check │
  │ query origin, │          │ cache; lock gone│
  │ check expiry  │          │ → check once    │
  └──────┬────────┘          │ more, else None │
         ▼                   └─────────────────┘
  ┌───────────────┐
  │ cache on hit, │
  │ release lock  │
  └───────────────┘

Key Behaviours
===============
- Not-found and expired results are never cached.
- A cached URL never outlives its record: the cache TTL is capped at the time
  left before the record expires.
- A follower never promotes itself to owner; an empty cache after the lock is
  gone means not found.
- Coordination store failures fail closed: the result is ``None`` and the
  Datastore is not queried.
- Malformed codes resolve to ``None`` like any unknown code.
"""

import asyncio
import datetime
import logging
import math
import time
import uuid
from collections.abc import Callable

from prometheus_client import Counter, Histogram
from redis.exceptions import RedisError

from shortener.codec import split_code
from shortener.config import Settings
from shortener.enums import CacheStatus, FollowerOutcome, LockRole
from shortener.errors import InvalidCodeError
from shortener.models import UrlRecord
from shortener.repository import Datastore
from shortener.store import CoordinationStore

__all__ = ["LockedCacheResolver", "cache_key", "lock_key", "utcnow"]

logger = logging.getLogger(__name__)

RESOLVE_REQUESTS_TOTAL = Counter(
    "shortener_resolve_requests_total",
    "Short-code resolutions",
    ["cache_hit"],
)
RESOLVE_LOCK_TOTAL = Counter(
    "shortener_resolve_lock_total",
    "Lock attempts on cache miss by resulting role",
    ["role"],
)
RESOLVE_FOLLOWER_OUTCOMES_TOTAL = Counter(
    "shortener_resolve_follower_outcomes_total",
    "How follower poll loops ended",
    ["outcome"],
)
ORIGIN_QUERIES_TOTAL = Counter(
    "shortener_origin_queries_total",
    "Datastore lookups made by lock owners",
)
RESOLVE_STORE_ERRORS_TOTAL = Counter(
    "shortener_resolve_store_errors_total",
    "Resolutions failed closed because the coordination store was unreachable",
)
RESOLVE_DURATION = Histogram(
    "shortener_resolve_duration_seconds",
    "Time taken to resolve a short code",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def cache_key(short_code: str) -> str:
    return f"short:{short_code}"


def lock_key(short_code: str) -> str:
    return f"lock:short:{short_code}"


class LockedCacheResolver:
    """Resolve short codes to long URLs through the coordination store.

    Example:
        >>> resolver = LockedCacheResolver(store, datastore, settings)
        >>> await resolver.resolve("_Q")
        'https://example.com'
        >>> await resolver.resolve("missing")
        None
    """

    def __init__(
        self,
        store: CoordinationStore,
        datastore: Datastore,
        settings: Settings,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        assert settings.CACHE_LOCK_RETRY_COUNT >= 0, "CACHE_LOCK_RETRY_COUNT must not be negative"
        self._store = store
        self._datastore = datastore
        self._cache_ttl = settings.CACHE_TTL_SECONDS
        self._lock_ttl = settings.CACHE_LOCK_TTL_SECONDS
        self._retry_count = settings.CACHE_LOCK_RETRY_COUNT
        self._retry_delay = settings.CACHE_LOCK_RETRY_DELAY_SECONDS
        self._clock = clock

    async def resolve(self, short_code: str) -> str | None:
        start_time = time.perf_counter()
        try:
            return await self._resolve(short_code)
        except RedisError:
            RESOLVE_STORE_ERRORS_TOTAL.inc()
            logger.error(f"Coordination store unavailable while resolving {short_code!r}", exc_info=True)
            return None
        finally:
            RESOLVE_DURATION.observe(time.perf_counter() - start_time)

    async def _resolve(self, short_code: str) -> str | None:
        if not short_code:
            return None

        cached = await self._store.get(cache_key(short_code))
        if cached:
            RESOLVE_REQUESTS_TOTAL.labels(cache_hit=CacheStatus.HIT).inc()
            return cached
        RESOLVE_REQUESTS_TOTAL.labels(cache_hit=CacheStatus.MISS).inc()

        token = uuid.uuid4().hex
        if await self._store.set_if_absent(lock_key(short_code), token, self._lock_ttl):
            RESOLVE_LOCK_TOTAL.labels(role=LockRole.OWNER).inc()
            return await self._resolve_as_owner(short_code, token)

        RESOLVE_LOCK_TOTAL.labels(role=LockRole.FOLLOWER).inc()
        return await self._wait_for_owner(short_code)

    async def _resolve_as_owner(self, short_code: str, token: str) -> str | None:
        try:
            record = await self._load_from_origin(short_code)
            if record is None:
                return None
            ttl = self._cache_ttl_for(record)
            if ttl > 0:
                await self._store.set(cache_key(short_code), record.long_url, ttl)
            return record.long_url
        finally:
            await self._release(short_code, token)

    def _cache_ttl_for(self, record: UrlRecord) -> int:
        if record.expiry is None:
            return self._cache_ttl
        remaining = math.ceil((record.expiry - self._clock()).total_seconds())
        return min(self._cache_ttl, remaining)

    async def _load_from_origin(self, short_code: str) -> UrlRecord | None:
        try:
            url_id, alias = split_code(short_code)
        except InvalidCodeError:
            logger.debug(f"Malformed short code {short_code!r}")
            return None

        ORIGIN_QUERIES_TOTAL.inc()
        try:
            if url_id is not None:
                record = await self._datastore.find_by_id(url_id)
            else:
                record = await self._datastore.find_by_alias(alias)
        except Exception:
            logger.error(f"Origin lookup failed for {short_code!r}", exc_info=True)
            return None

        if record is None:
            logger.debug(f"No record for {short_code!r}")
            return None
        if record.is_expired(self._clock()):
            logger.debug(f"Record for {short_code!r} expired at {record.expiry}")
            return None
        return record

    async def _release(self, short_code: str, token: str) -> None:
        try:
            await self._store.delete_if_equals(lock_key(short_code), token)
        except RedisError:
            # The lock TTL reclaims it.
            logger.warning(f"Failed to release resolution lock for {short_code!r}", exc_info=True)

    async def _wait_for_owner(self, short_code: str) -> str | None:
        for _ in range(self._retry_count):
            await asyncio.sleep(self._retry_delay)

            cached = await self._store.get(cache_key(short_code))
            if cached:
                RESOLVE_FOLLOWER_OUTCOMES_TOTAL.labels(outcome=FollowerOutcome.CACHE_FILLED).inc()
                return cached

            if not await self._store.exists(lock_key(short_code)):
                cached = await self._store.get(cache_key(short_code))
                if cached:
                    RESOLVE_FOLLOWER_OUTCOMES_TOTAL.labels(outcome=FollowerOutcome.CACHE_FILLED).inc()
                    return cached
                RESOLVE_FOLLOWER_OUTCOMES_TOTAL.labels(outcome=FollowerOutcome.LOCK_RELEASED_EMPTY).inc()
                return None

        RESOLVE_FOLLOWER_OUTCOMES_TOTAL.labels(outcome=FollowerOutcome.BUDGET_EXHAUSTED).inc()
        logger.info(f"Gave up waiting for resolution of {short_code!r} after {self._retry_count} retries")
        return None
