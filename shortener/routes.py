"""FastAPI route definitions for the short-link service.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /shorten                      (Bearer token)
        ├─ ShortenRequest (request body)
        └─ ShortenResponse (200) or 401/409/422/429

    GET  /url/:short_code?start_date&end_date   (Bearer token, owner only)
        └─ AnalyticsResponse (200) or 401/403/404

    GET  /:short_code
        └─ 301 Redirect or 404/429

Key Behaviours
===============
- Redirects are rate limited per short code, creation per principal.
- Unknown, expired and malformed codes all answer 404.
- Clicks are recorded after the redirect target is known and never delay it.
- Service errors are rendered as ``ErrorResponse`` by the handlers in main.
"""

import datetime
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from shortener.dependencies import ServiceContainer, get_container, get_principal
from shortener.enums import HealthStatus
from shortener.errors import NotFoundError, RateLimitedError
from shortener.schemas import (
    AnalyticsResponse,
    ClickAnalyticsEntry,
    HealthResponse,
    ShortenRequest,
    ShortenResponse,
)

__all__ = ["router"]

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(container: ServiceContainer = Depends(get_container)) -> HealthResponse:
    db_status = HealthStatus.UNHEALTHY
    cache_status = HealthStatus.HEALTHY

    if container.engine is not None:
        try:
            async with container.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            db_status = HealthStatus.HEALTHY
        except Exception as e:
            logger.error(f"Database health check failed: {e}")

    try:
        await container.store.ping()
    except Exception as e:
        logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/shorten", response_model=ShortenResponse, tags=["urls"])
async def shorten_url(
    payload: ShortenRequest,
    principal: str = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> ShortenResponse:
    if not await container.create_limiter.allow(principal):
        raise RateLimitedError("Rate limit exceeded")

    short_code = await container.url_service.shorten(
        payload.url,
        principal,
        alias=payload.short_url,
        expiry=payload.expiry,
    )
    return ShortenResponse(short_url=container.url_service.short_url(short_code))


@router.get("/url/{short_code}", response_model=AnalyticsResponse, tags=["analytics"])
async def get_analytics(
    short_code: str,
    start_date: datetime.datetime = Query(...),
    end_date: datetime.datetime = Query(...),
    principal: str = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> AnalyticsResponse:
    rows = await container.url_service.click_analytics(short_code, principal, start_date, end_date)
    return AnalyticsResponse(
        short_url=container.url_service.short_url(short_code),
        entries=[ClickAnalyticsEntry.model_validate(row) for row in rows],
    )


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    container: ServiceContainer = Depends(get_container),
) -> RedirectResponse:
    if not await container.redirect_limiter.allow(short_code):
        raise RateLimitedError("Rate limit exceeded")

    long_url = await container.resolver.resolve(short_code)
    if long_url is None:
        logger.debug(f"Redirect failed - short code not found: {short_code}")
        raise NotFoundError("A long URL does not exist for the short URL")

    container.aggregator.record_click(short_code)
    return RedirectResponse(url=long_url, status_code=301)
