"""Service wiring and FastAPI dependency providers.

All shared resources (Redis client, database engine, the three coordination
components) are built once in the application lifespan and stored on
``app.state.container``. Route handlers receive them through ``Depends``
providers, so tests swap in fakes by building a container by hand.
"""

import logging
from dataclasses import dataclass

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncEngine

from shortener.analytics import BucketKeyFormat, ClickAggregator
from shortener.auth import AuthVerifier, StaticTokenVerifier, bearer_token
from shortener.config import Settings
from shortener.database import create_engine, create_session_factory, init_db
from shortener.rate_limit import RateLimiter
from shortener.repository import Datastore, SqlDatastore
from shortener.resolver import LockedCacheResolver
from shortener.scheduler import FlushScheduler
from shortener.store import CoordinationStore, RedisCoordinationStore, create_redis
from shortener.url_service import UrlService

__all__ = [
    "ServiceContainer",
    "create_container",
    "setup_logging",
    "get_container",
    "get_principal",
]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: Settings) -> logging.Logger:
    """Attach a stream handler to the package logger once."""
    logger = logging.getLogger("shortener")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(settings.LOG_LEVEL.upper())
    return logger


@dataclass
class ServiceContainer:
    """Everything a request handler or background task needs."""

    settings: Settings
    store: CoordinationStore
    datastore: Datastore
    auth: AuthVerifier
    resolver: LockedCacheResolver
    redirect_limiter: RateLimiter
    create_limiter: RateLimiter
    aggregator: ClickAggregator
    scheduler: FlushScheduler
    url_service: UrlService
    engine: AsyncEngine | None = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: CoordinationStore,
        datastore: Datastore,
        auth: AuthVerifier,
        engine: AsyncEngine | None = None,
    ) -> "ServiceContainer":
        aggregator = ClickAggregator(store, datastore, BucketKeyFormat(settings.ANALYTICS_TIME_KEY_FORMAT))
        return cls(
            settings=settings,
            store=store,
            datastore=datastore,
            auth=auth,
            resolver=LockedCacheResolver(store, datastore, settings),
            redirect_limiter=RateLimiter.for_redirects(store, settings),
            create_limiter=RateLimiter.for_creation(store, settings),
            aggregator=aggregator,
            scheduler=FlushScheduler(aggregator, settings.ANALYTICS_FLUSH_OFFSET_SECONDS),
            url_service=UrlService(datastore, settings.BASE_URL),
            engine=engine,
        )

    async def start(self) -> None:
        if self.engine is not None:
            await init_db(self.engine)
        if self.settings.ANALYTICS_SCHEDULER_ENABLED:
            await self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.aggregator.drain()
        if isinstance(self.store, RedisCoordinationStore):
            await self.store.close()
        if self.engine is not None:
            await self.engine.dispose()


def create_container(settings: Settings) -> ServiceContainer:
    engine = create_engine(settings)
    datastore = SqlDatastore(create_session_factory(engine), settings.DATASTORE_MAX_CONCURRENCY)
    store = RedisCoordinationStore(create_redis(settings.REDIS_URL))
    return ServiceContainer.build(
        settings,
        store,
        datastore,
        StaticTokenVerifier(settings.API_TOKENS),
        engine=engine,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


async def get_principal(
    authorization: str | None = Header(None),
    container: ServiceContainer = Depends(get_container),
) -> str:
    return await container.auth.principal_for(bearer_token(authorization))
