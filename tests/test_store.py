"""RedisCoordinationStore command mapping tests against a mocked client."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis

from shortener.store import RedisCoordinationStore


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Mock Redis client."""
    redis_client = AsyncMock(spec=redis.Redis)
    redis_client.get = AsyncMock(return_value=None)
    redis_client.set = AsyncMock(return_value=True)
    redis_client.delete = AsyncMock(return_value=1)
    redis_client.exists = AsyncMock(return_value=1)
    redis_client.hgetall = AsyncMock(return_value={})
    redis_client.ping = AsyncMock(return_value=True)
    redis_client.register_script = MagicMock(return_value=AsyncMock(return_value=1))
    return redis_client


@pytest.fixture
def mock_pipeline(mock_redis: AsyncMock) -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[4, True])
    mock_redis.pipeline = MagicMock(return_value=pipe)
    return pipe


@pytest.fixture
def store(mock_redis: AsyncMock) -> RedisCoordinationStore:
    return RedisCoordinationStore(mock_redis)


@pytest.mark.asyncio
async def test_set_uses_expiry(store: RedisCoordinationStore, mock_redis: AsyncMock) -> None:
    await store.set("short:_Q", "https://example.com", 3600)
    mock_redis.set.assert_awaited_once_with("short:_Q", "https://example.com", ex=3600)


@pytest.mark.asyncio
async def test_set_if_absent_uses_nx(store: RedisCoordinationStore, mock_redis: AsyncMock) -> None:
    assert await store.set_if_absent("lock:short:_Q", "token", 10) is True
    mock_redis.set.assert_awaited_once_with("lock:short:_Q", "token", ex=10, nx=True)

    mock_redis.set.return_value = None
    assert await store.set_if_absent("lock:short:_Q", "token", 10) is False


@pytest.mark.asyncio
async def test_delete_if_equals_runs_compare_and_delete(store: RedisCoordinationStore, mock_redis: AsyncMock) -> None:
    script = mock_redis.register_script.return_value

    assert await store.delete_if_equals("lock:short:_Q", "token") is True
    script.assert_awaited_once_with(keys=["lock:short:_Q"], args=["token"])

    script.return_value = 0
    assert await store.delete_if_equals("lock:short:_Q", "token") is False


@pytest.mark.asyncio
async def test_decrement_sets_ttl_only_when_missing(store: RedisCoordinationStore, mock_redis: AsyncMock, mock_pipeline: MagicMock) -> None:
    assert await store.decrement("rate_limit:get:_Q", 60) == 4

    mock_redis.pipeline.assert_called_once_with(transaction=True)
    mock_pipeline.decr.assert_called_once_with("rate_limit:get:_Q")
    mock_pipeline.expire.assert_called_once_with("rate_limit:get:_Q", 60, nx=True)


@pytest.mark.asyncio
async def test_hincrby_sets_ttl_only_when_missing(store: RedisCoordinationStore, mock_pipeline: MagicMock) -> None:
    mock_pipeline.execute.return_value = [3, False]

    assert await store.hincrby("analytics:2025.12.21.10", "_Q", 1, 10800) == 3

    mock_pipeline.hincrby.assert_called_once_with("analytics:2025.12.21.10", "_Q", 1)
    mock_pipeline.expire.assert_called_once_with("analytics:2025.12.21.10", 10800, nx=True)


@pytest.mark.asyncio
async def test_scan_prefix(store: RedisCoordinationStore, mock_redis: AsyncMock) -> None:
    async def keys():
        for key in ("analytics:2025.12.21.09", "analytics:2025.12.21.10"):
            yield key

    mock_redis.scan_iter = MagicMock(return_value=keys())

    assert await store.scan_prefix("analytics:") == ["analytics:2025.12.21.09", "analytics:2025.12.21.10"]
    mock_redis.scan_iter.assert_called_once_with(match="analytics:*")


@pytest.mark.asyncio
async def test_delete_without_keys_skips_redis(store: RedisCoordinationStore, mock_redis: AsyncMock) -> None:
    assert await store.delete() == 0
    mock_redis.delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_exists_and_ping(store: RedisCoordinationStore, mock_redis: AsyncMock) -> None:
    assert await store.exists("analytics:2025.12.21.10") is True
    assert await store.ping() is True


@pytest.mark.asyncio
async def test_ttl_must_be_positive(store: RedisCoordinationStore) -> None:
    with pytest.raises(AssertionError):
        await store.set("short:_Q", "https://example.com", 0)
