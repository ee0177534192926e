"""FastAPI application for Conduit."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from conduit.config import Settings
from conduit.exceptions import (
    ConduitError,
    NotFoundError,
    RateLimitError,
    StorageError,
    UnsafeURLError,
    UsageLimitExceededError,
    ValidationError,
)
from conduit.logging import configure_logging, get_logger
from conduit.service import ConduitService

from .helpers import (
    rate_limit_denial_body,
    rate_limit_headers,
    usage_denial_body,
    usage_headers,
)
from .router import router, set_service

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    service: ConduitService | None = None,
) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.
        service: Optional pre-built service (tests inject one with mock transports).

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from conduit.api import create_app

        app = create_app()
        # Run with: uvicorn conduit.api:app --reload
        ```
    """
    if settings is None:
        settings = service.settings if service is not None else Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Build and start the service on startup, close it on shutdown."""
        configure_logging(level=settings.log_level, format=settings.log_format)
        logger.info(
            "Starting Conduit API",
            log_level=settings.log_level,
            distributed=settings.is_distributed,
        )

        active = service or ConduitService.create(settings)
        await active.initialize()
        set_service(active)

        yield

        await active.close()
        set_service(None)

    app = FastAPI(
        title="Conduit",
        description="Webhook delivery and usage-gated admission for multi-tenant ingestion.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Register exception handlers
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(UnsafeURLError)
    async def unsafe_url_error_handler(request: Request, exc: UnsafeURLError) -> JSONResponse:
        """Handle rejected webhook URLs with 400 status."""
        logger.warning("Unsafe webhook URL", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(UsageLimitExceededError)
    async def usage_limit_error_handler(
        request: Request, exc: UsageLimitExceededError
    ) -> JSONResponse:
        """Handle plan limit denials with 429 status."""
        result = exc.result
        headers = usage_headers(result)
        if result.seconds_until_reset is not None:
            headers["Retry-After"] = str(result.seconds_until_reset)
        logger.info(
            "Usage limit exceeded",
            limit_type=result.limit_type,
            current_usage=result.current_usage,
            limit=result.limit,
            path=str(request.url),
        )
        return JSONResponse(status_code=429, content=usage_denial_body(result), headers=headers)

    @app.exception_handler(RateLimitError)
    async def rate_limit_error_handler(request: Request, exc: RateLimitError) -> JSONResponse:
        """Handle hourly rate limit denials with 429 status."""
        logger.warning("Rate limit exceeded", retry_after=exc.retry_after, path=str(request.url))
        headers = rate_limit_headers(exc.info)
        headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(
            status_code=429,
            content=rate_limit_denial_body(exc.retry_after, exc.message),
            headers=headers,
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        """Handle unreachable or contended stores with 503 status."""
        logger.error("Storage error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=503, content=exc.to_dict())

    @app.exception_handler(ConduitError)
    async def conduit_error_handler(request: Request, exc: ConduitError) -> JSONResponse:
        """Handle all other Conduit errors with 500 status."""
        logger.error("Conduit error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())

    app.include_router(router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
