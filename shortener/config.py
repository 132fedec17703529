"""Runtime settings for the short-link service.

Every tunable is read from the environment (or ``.env``) once per process via
``get_settings()``; components receive the values they need at construction
and never read the environment themselves.

Settings Groups
===============
::
    group               fields                                  consumed by
    ─────────────────   ─────────────────────────────────────   ─────────────────────
    service             APP_NAME APP_ENV BASE_URL LOG_LEVEL      main, UrlService
    PostgreSQL          DATABASE_URL DB_POOL_SIZE                database, SqlDatastore
                        DB_MAX_OVERFLOW DATASTORE_MAX_CONCURRENCY
    Redis               REDIS_URL                                store
    resolution          CACHE_TTL_SECONDS CACHE_LOCK_*           LockedCacheResolver
    rate limiting       RATE_LIMIT_REDIRECT_* RATE_LIMIT_CREATE_*  RateLimiter
    click analytics     ANALYTICS_*                              ClickAggregator, FlushScheduler
    auth                API_TOKENS                               StaticTokenVerifier

How to Use
===========
**Read the process-wide instance**::
    from shortener.config import get_settings
    ttl = get_settings().CACHE_TTL_SECONDS

**Override in tests**::
    settings = Settings(RATE_LIMIT_REDIRECT_CAPACITY=3, ANALYTICS_SCHEDULER_ENABLED=False)

Key Behaviours
===============
- Names are case sensitive and match the environment variable names.
- ``API_TOKENS`` is read as a JSON object mapping bearer token -> principal.
- ``ANALYTICS_TIME_KEY_FORMAT`` is validated when the aggregator is built, not here.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortener:shortener@db:5432/shortener"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5
    # Upper bound on concurrent Datastore calls, kept below the pool size
    DATASTORE_MAX_CONCURRENCY: int = 8

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Cache-aside resolution
    CACHE_TTL_SECONDS: int = 3600
    CACHE_LOCK_TTL_SECONDS: int = 10
    CACHE_LOCK_RETRY_COUNT: int = 20
    CACHE_LOCK_RETRY_DELAY_SECONDS: float = 0.1

    # Fixed-window rate limiting
    RATE_LIMIT_REDIRECT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_REDIRECT_CAPACITY: int = 10
    RATE_LIMIT_CREATE_WINDOW_SECONDS: int = 60
    RATE_LIMIT_CREATE_CAPACITY: int = 5

    # Click analytics
    ANALYTICS_TIME_KEY_FORMAT: str = "year.month.day.hour"
    ANALYTICS_FLUSH_OFFSET_SECONDS: int = 1
    ANALYTICS_SCHEDULER_ENABLED: bool = True

    # Bearer token -> principal
    API_TOKENS: dict[str, str] = {}

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
