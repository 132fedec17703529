"""Shorten endpoint behavior tests."""

import pytest
from httpx import AsyncClient

from tests.conftest import BOB_TOKEN, auth_header
from tests.fakes import FakeDatastore


@pytest.mark.asyncio
async def test_shorten_valid_url(client: AsyncClient, datastore: FakeDatastore) -> None:
    response = await client.post("/shorten", json={"url": "https://www.google.com"}, headers=auth_header())
    assert response.status_code == 200
    assert response.json() == {"short_url": "http://sho.rt/_b"}
    assert datastore.records[1].owner == "alice"


@pytest.mark.asyncio
async def test_shorten_with_custom_alias(client: AsyncClient) -> None:
    response = await client.post(
        "/shorten",
        json={"url": "https://www.github.com", "short_url": "my-code"},
        headers=auth_header(),
    )
    assert response.status_code == 200
    assert response.json()["short_url"] == "http://sho.rt/my-code"


@pytest.mark.asyncio
async def test_shorten_with_expiry(client: AsyncClient, datastore: FakeDatastore) -> None:
    response = await client.post(
        "/shorten",
        json={"url": "https://www.github.com", "expiry": "2030-01-01T00:00:00"},
        headers=auth_header(),
    )
    assert response.status_code == 200
    assert datastore.records[1].expiry.tzinfo is not None


@pytest.mark.asyncio
async def test_shorten_requires_token(client: AsyncClient) -> None:
    response = await client.post("/shorten", json={"url": "https://www.google.com"})
    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"


@pytest.mark.asyncio
@pytest.mark.parametrize("header", ["Bearer wrong-token", "Basic dG9rZW4=", "Bearer"])
async def test_shorten_rejects_bad_token(client: AsyncClient, header: str) -> None:
    response = await client.post(
        "/shorten",
        json={"url": "https://www.google.com"},
        headers={"Authorization": header},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["not-a-url", "", "ftp//missing-colon"])
async def test_shorten_invalid_url(client: AsyncClient, url: str) -> None:
    response = await client.post("/shorten", json={"url": url}, headers=auth_header())
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize("alias", ["ab", "_Q", "has space", "health", "shorten"])
async def test_shorten_invalid_alias(client: AsyncClient, alias: str) -> None:
    response = await client.post(
        "/shorten",
        json={"url": "https://www.github.com", "short_url": alias},
        headers=auth_header(),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_shorten_duplicate_custom_alias(client: AsyncClient) -> None:
    await client.post(
        "/shorten",
        json={"url": "https://www.github.com", "short_url": "dupe-code"},
        headers=auth_header(),
    )
    response = await client.post(
        "/shorten",
        json={"url": "https://www.gitlab.com", "short_url": "dupe-code"},
        headers=auth_header(BOB_TOKEN),
    )
    assert response.status_code == 409
    assert response.json() == {"error": "DUPLICATE_REQUEST", "message": "Custom short URL already exists"}


@pytest.mark.asyncio
async def test_shorten_duplicate_long_url(client: AsyncClient) -> None:
    await client.post("/shorten", json={"url": "https://www.python.org"}, headers=auth_header())
    response = await client.post("/shorten", json={"url": "https://www.python.org"}, headers=auth_header(BOB_TOKEN))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_shorten_rate_limited_per_principal(client: AsyncClient) -> None:
    for i in range(2):
        response = await client.post("/shorten", json={"url": f"https://example.com/{i}"}, headers=auth_header())
        assert response.status_code == 200

    response = await client.post("/shorten", json={"url": "https://example.com/2"}, headers=auth_header())
    assert response.status_code == 429
    assert response.json()["error"] == "RATE_LIMIT_EXCEEDED"

    response = await client.post("/shorten", json={"url": "https://example.com/3"}, headers=auth_header(BOB_TOKEN))
    assert response.status_code == 200
