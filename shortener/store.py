"""Coordination store capability and its Redis implementation.

Every coordination primitive the service relies on (cache entries, resolver
locks, rate-limit counters, analytics buckets) goes through the
``CoordinationStore`` protocol. Components receive a store instance at
construction time; nothing in the service reaches for a module-level client.

Operation Map
=============
::
    CoordinationStore           Redis command(s)
    ─────────────────────────   ───────────────────────────────
    get / set                   GET / SET EX
    set_if_absent               SET NX EX
    delete                      DEL
    delete_if_equals            EVAL (compare-and-delete)
    decrement                   MULTI  DECR  EXPIRE NX  EXEC
    hget / hset / hgetall       HGET / HSET / HGETALL
    hincrby                     MULTI  HINCRBY  EXPIRE NX  EXEC
    hdel                        HDEL
    exists                      EXISTS
    scan_prefix                 SCAN MATCH prefix*
    ping                        PING

How to Use
===========
**Step 1: Create on startup**::
    client = create_redis(settings.REDIS_URL)
    store = RedisCoordinationStore(client)

**Step 2: Pass to components**::
    resolver = LockedCacheResolver(store, datastore, settings)

**Step 3: Cleanup on shutdown**::
    await store.close()

Key Behaviours
===============
- ``decrement`` and ``hincrby`` attach the TTL only when the key has none, so an
  existing window or bucket keeps its original expiry.
- ``delete_if_equals`` deletes a lock only while it still holds the caller's token.
- All Redis errors propagate as ``redis.exceptions.RedisError``; callers decide
  whether to fail open or closed.
"""

from collections.abc import Mapping
from typing import Protocol

import redis.asyncio as redis

__all__ = ["CoordinationStore", "RedisCoordinationStore", "create_redis"]

_COMPARE_AND_DELETE = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class CoordinationStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def delete_if_equals(self, key: str, value: str) -> bool: ...

    async def decrement(self, key: str, ttl_seconds: int) -> int: ...

    async def hget(self, key: str, field: str) -> str | None: ...

    async def hset(self, key: str, mapping: Mapping[str, str | int]) -> int: ...

    async def hincrby(self, key: str, field: str, amount: int, ttl_seconds: int) -> int: ...

    async def hgetall(self, key: str) -> dict[str, str]: ...

    async def hdel(self, key: str, *fields: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def scan_prefix(self, prefix: str) -> list[str]: ...

    async def ping(self) -> bool: ...


def create_redis(url: str) -> redis.Redis:
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
    )


class RedisCoordinationStore:
    """``CoordinationStore`` backed by a ``redis.asyncio`` client."""

    def __init__(self, client: redis.Redis):
        self._client = client
        self._compare_and_delete = client.register_script(_COMPARE_AND_DELETE)

    @property
    def client(self) -> redis.Redis:
        return self._client

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        assert ttl_seconds > 0, f"ttl_seconds must be positive, got {ttl_seconds!r}"
        await self._client.set(key, value, ex=ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        assert ttl_seconds > 0, f"ttl_seconds must be positive, got {ttl_seconds!r}"
        locked = await self._client.set(key, value, ex=ttl_seconds, nx=True)
        return bool(locked)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._client.delete(*keys)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        deleted = await self._compare_and_delete(keys=[key], args=[value])
        return bool(deleted)

    async def decrement(self, key: str, ttl_seconds: int) -> int:
        assert ttl_seconds > 0, f"ttl_seconds must be positive, got {ttl_seconds!r}"
        pipe = self._client.pipeline(transaction=True)
        pipe.decr(key)
        pipe.expire(key, ttl_seconds, nx=True)
        remaining, _ = await pipe.execute()
        return int(remaining)

    async def hget(self, key: str, field: str) -> str | None:
        return await self._client.hget(key, field)

    async def hset(self, key: str, mapping: Mapping[str, str | int]) -> int:
        return await self._client.hset(key, mapping=dict(mapping))

    async def hincrby(self, key: str, field: str, amount: int, ttl_seconds: int) -> int:
        assert ttl_seconds > 0, f"ttl_seconds must be positive, got {ttl_seconds!r}"
        pipe = self._client.pipeline(transaction=True)
        pipe.hincrby(key, field, amount)
        pipe.expire(key, ttl_seconds, nx=True)
        total, _ = await pipe.execute()
        return int(total)

    async def hgetall(self, key: str) -> dict[str, str]:
        return await self._client.hgetall(key)

    async def hdel(self, key: str, *fields: str) -> int:
        if not fields:
            return 0
        return await self._client.hdel(key, *fields)

    async def exists(self, key: str) -> bool:
        return bool(await self._client.exists(key))

    async def scan_prefix(self, prefix: str) -> list[str]:
        return [key async for key in self._client.scan_iter(match=f"{prefix}*")]

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
