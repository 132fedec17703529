"""FastAPI application entry point for the short-link service.

Application Lifecycle
=====================
::
    startup   build ServiceContainer (Redis store, engine, SqlDatastore)
              └─► init_db() ─► FlushScheduler.start()
    serving   /health  /shorten  /url/{code}  /{code}  /metrics
    shutdown  FlushScheduler.stop() ─► drain pending clicks
              └─► close Redis ─► dispose engine

How to Use
===========
**Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

**Build an app around a prepared container (tests)**::
    app = create_app(container)

``ShortenerError`` subclasses raised anywhere below a route are rendered as
``{"error": <code>, "message": <text>}`` with the status mapped below.
"""

__all__ = ["app", "create_app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortener.config import get_settings
from shortener.dependencies import ServiceContainer, create_container, setup_logging
from shortener.errors import (
    DuplicateError,
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    ShortenerError,
    UnauthorizedError,
)
from shortener.routes import router
from shortener.schemas import ErrorResponse

_STATUS_CODES: dict[type[ShortenerError], int] = {
    NotFoundError: 404,
    DuplicateError: 409,
    UnauthorizedError: 401,
    ForbiddenError: 403,
    RateLimitedError: 429,
}


async def shortener_error_handler(request: Request, exc: ShortenerError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _STATUS_CODES.items() if isinstance(exc, error_type)),
        500,
    )
    body = ErrorResponse(error=exc.code, message=str(exc))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    settings = container.settings if container is not None else get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        active = container or create_container(settings)
        app.state.container = active
        await active.start()
        yield
        # Shutdown
        await active.close()

    application = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Short-link redirects with cache stampede protection, rate limiting and click analytics",
        lifespan=lifespan,
    )
    if container is not None:
        application.state.container = container
    application.add_exception_handler(ShortenerError, shortener_error_handler)

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(application).expose(application)

    application.include_router(router)
    return application


app = create_app()
