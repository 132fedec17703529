"""Shared pytest fixtures for unit and API tests.

Every test runs against in-memory fakes of the coordination store and the
Datastore, so no Redis or PostgreSQL instance is required.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shortener.auth import StaticTokenVerifier
from shortener.config import Settings
from shortener.dependencies import ServiceContainer
from shortener.main import create_app
from tests.fakes import FakeClock, FakeCoordinationStore, FakeDatastore

ALICE_TOKEN = "token-alice"
BOB_TOKEN = "token-bob"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        BASE_URL="http://sho.rt",
        CACHE_LOCK_RETRY_COUNT=50,
        CACHE_LOCK_RETRY_DELAY_SECONDS=0.01,
        RATE_LIMIT_REDIRECT_CAPACITY=3,
        RATE_LIMIT_CREATE_CAPACITY=2,
        ANALYTICS_SCHEDULER_ENABLED=False,
        API_TOKENS={ALICE_TOKEN: "alice", BOB_TOKEN: "bob"},
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> FakeCoordinationStore:
    return FakeCoordinationStore(clock)


@pytest.fixture
def datastore() -> FakeDatastore:
    return FakeDatastore()


@pytest.fixture
def container(settings: Settings, store: FakeCoordinationStore, datastore: FakeDatastore) -> ServiceContainer:
    return ServiceContainer.build(settings, store, datastore, StaticTokenVerifier(settings.API_TOKENS))


@pytest_asyncio.fixture(scope="function")
async def client(container: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=create_app(container))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await container.aggregator.drain()


def auth_header(token: str = ALICE_TOKEN) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
