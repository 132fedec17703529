"""Short-link creation and analytics service tests."""

import datetime
from unittest.mock import AsyncMock

import pytest

from shortener.errors import DuplicateError, ForbiddenError, NotFoundError
from shortener.url_service import UrlService, hash_url
from tests.fakes import FakeDatastore

UTC = datetime.UTC


@pytest.fixture
def service(datastore: FakeDatastore) -> UrlService:
    return UrlService(datastore, "http://sho.rt/")


def test_hash_url_is_sha256_hex() -> None:
    digest = hash_url("https://example.com")
    assert len(digest) == 64
    assert digest == hash_url("https://example.com")
    assert digest != hash_url("https://example.org")


def test_short_url_joins_base(service: UrlService) -> None:
    assert service.short_url("_Q") == "http://sho.rt/_Q"


@pytest.mark.asyncio
async def test_shorten_returns_encoded_id(service: UrlService, datastore: FakeDatastore) -> None:
    datastore.add_record("https://seed.example", url_id=41)

    short_code = await service.shorten("https://example.com", "alice")

    assert short_code == "_Q"
    record = datastore.records[42]
    assert record.owner == "alice"
    assert record.long_url_hash == hash_url("https://example.com")


@pytest.mark.asyncio
async def test_shorten_with_alias(service: UrlService, datastore: FakeDatastore) -> None:
    expiry = datetime.datetime(2030, 1, 1, tzinfo=UTC)

    short_code = await service.shorten("https://www.python.org", "alice", alias="py-home", expiry=expiry)

    assert short_code == "py-home"
    assert datastore.aliases["py-home"] in datastore.records
    assert datastore.records[datastore.aliases["py-home"]].expiry == expiry


@pytest.mark.asyncio
async def test_shorten_rejects_duplicate_long_url(service: UrlService) -> None:
    await service.shorten("https://example.com", "alice")

    with pytest.raises(DuplicateError, match="exists for the long URL"):
        await service.shorten("https://example.com", "bob")


@pytest.mark.asyncio
async def test_shorten_rejects_taken_alias(service: UrlService) -> None:
    await service.shorten("https://example.com", "alice", alias="docs")

    with pytest.raises(DuplicateError, match="Custom short URL already exists"):
        await service.shorten("https://example.org", "alice", alias="docs")


@pytest.mark.asyncio
async def test_shorten_losing_insert_race_is_duplicate(service: UrlService, datastore: FakeDatastore) -> None:
    await service.shorten("https://example.com", "alice", alias="docs")
    datastore.alias_exists = AsyncMock(return_value=False)

    with pytest.raises(DuplicateError):
        await service.shorten("https://example.org", "bob", alias="docs")


@pytest.mark.asyncio
async def test_find_record(service: UrlService, datastore: FakeDatastore) -> None:
    datastore.add_record("https://example.com", url_id=42, alias="docs")

    assert (await service.find_record("_Q")).id == 42
    assert (await service.find_record("docs")).id == 42

    for missing in ("_R", "nope", "_!!"):
        with pytest.raises(NotFoundError):
            await service.find_record(missing)


@pytest.mark.asyncio
async def test_click_analytics_for_owner(service: UrlService, datastore: FakeDatastore) -> None:
    datastore.add_record("https://example.com", url_id=42, owner="alice")
    hour = datetime.datetime(2025, 12, 21, 10, tzinfo=UTC)
    await datastore.upsert_click_count(hour, 42, 3)
    await datastore.upsert_click_count(hour + datetime.timedelta(hours=1), 42, 2)
    await datastore.upsert_click_count(hour + datetime.timedelta(days=2), 42, 9)

    rows = await service.click_analytics("_Q", "alice", hour, hour + datetime.timedelta(days=1))

    assert [(row.time, row.count) for row in rows] == [
        (hour, 3),
        (hour + datetime.timedelta(hours=1), 2),
    ]


@pytest.mark.asyncio
async def test_click_analytics_forbidden_for_other_principal(service: UrlService, datastore: FakeDatastore) -> None:
    datastore.add_record("https://example.com", url_id=42, owner="alice")
    start = datetime.datetime(2025, 12, 21, tzinfo=UTC)

    with pytest.raises(ForbiddenError):
        await service.click_analytics("_Q", "bob", start, start + datetime.timedelta(days=1))
