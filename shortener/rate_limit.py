"""Decrementing fixed-window rate limiting.

A counter key holds the number of admissions left in the current window. The
window starts when the key is created and ends when its TTL lapses; denials
never touch the key, so capacity always returns ``window_seconds`` after the
first admission of the window.

This is a fixed window, not a sliding one: up to ``2 x capacity`` requests can
be admitted across a window boundary, in exchange for O(1) store operations
per decision.

State Diagram: admit(key, window, capacity)
============================================
::
    counter absent ──► SET NX capacity EX window ──► DECR ──► admit iff >= 0
    counter > 0    ──► DECR ─────────────────────────────────► admit iff >= 0
    counter <= 0   ──► deny (value and TTL untouched)
    counter junk   ──► SET capacity EX window ─────► DECR ──► admit iff >= 0
    wrong key type ──► SET capacity EX window ─────► DECR ──► admit iff >= 0

How to Use
===========
**Step 1: Build the two limiters**::
    redirect_limiter = RateLimiter.for_redirects(store, settings)
    create_limiter = RateLimiter.for_creation(store, settings)

**Step 2: Guard a request**::
    if not await redirect_limiter.allow(short_code):
        raise HTTPException(status_code=429)
"""

import logging

from prometheus_client import Counter
from redis.exceptions import RedisError, ResponseError

from shortener.config import Settings
from shortener.enums import RateLimitDecision
from shortener.store import CoordinationStore

__all__ = ["RateLimiter"]

logger = logging.getLogger(__name__)

RATE_LIMIT_DECISIONS_TOTAL = Counter(
    "shortener_rate_limit_decisions_total",
    "Rate limiter decisions",
    ["limiter", "decision"],
)


class RateLimiter:
    """Fixed-window limiter bound to one key namespace, window and capacity."""

    def __init__(self, store: CoordinationStore, name: str, window_seconds: int, capacity: int):
        assert window_seconds > 0, f"window_seconds must be positive, got {window_seconds!r}"
        assert capacity > 0, f"capacity must be positive, got {capacity!r}"
        self._store = store
        self.name = name
        self.window_seconds = window_seconds
        self.capacity = capacity

    @classmethod
    def for_redirects(cls, store: CoordinationStore, settings: Settings) -> "RateLimiter":
        """Limiter keyed by short code, protecting redirect traffic."""
        return cls(
            store,
            "get",
            settings.RATE_LIMIT_REDIRECT_WINDOW_SECONDS,
            settings.RATE_LIMIT_REDIRECT_CAPACITY,
        )

    @classmethod
    def for_creation(cls, store: CoordinationStore, settings: Settings) -> "RateLimiter":
        """Limiter keyed by authenticated principal, protecting link creation."""
        return cls(
            store,
            "post",
            settings.RATE_LIMIT_CREATE_WINDOW_SECONDS,
            settings.RATE_LIMIT_CREATE_CAPACITY,
        )

    def key_for(self, subject: str) -> str:
        return f"rate_limit:{self.name}:{subject}"

    async def allow(self, subject: str) -> bool:
        """Admit or deny one request for ``subject``.

        A coordination store outage admits the request: the resolver behind the
        limiter already fails closed, so the limiter does not also take the
        service down.
        """
        try:
            admitted = await self.admit(self.key_for(subject), self.window_seconds, self.capacity)
        except RedisError:
            RATE_LIMIT_DECISIONS_TOTAL.labels(limiter=self.name, decision=RateLimitDecision.STORE_ERROR).inc()
            logger.error(f"Rate limiter {self.name!r} unavailable, admitting {subject!r}", exc_info=True)
            return True

        decision = RateLimitDecision.ADMITTED if admitted else RateLimitDecision.DENIED
        RATE_LIMIT_DECISIONS_TOTAL.labels(limiter=self.name, decision=decision).inc()
        if not admitted:
            logger.info(f"Rate limit exceeded for {self.name}:{subject}")
        return admitted

    async def admit(self, key: str, window_seconds: int, capacity: int) -> bool:
        try:
            current = await self._store.get(key)
        except ResponseError:
            # WRONGTYPE: SET replaces a key of any type.
            logger.warning(f"Resetting rate limit counter {key} holding a non-string value")
            return await self._reset(key, window_seconds, capacity)

        if current is None:
            await self._store.set_if_absent(key, str(capacity), window_seconds)
            return await self._store.decrement(key, window_seconds) >= 0

        try:
            remaining = int(current)
        except ValueError:
            logger.warning(f"Resetting non-numeric rate limit counter {key}={current!r}")
            return await self._reset(key, window_seconds, capacity)

        if remaining <= 0:
            return False
        return await self._store.decrement(key, window_seconds) >= 0

    async def _reset(self, key: str, window_seconds: int, capacity: int) -> bool:
        await self._store.set(key, str(capacity), window_seconds)
        return await self._store.decrement(key, window_seconds) >= 0
