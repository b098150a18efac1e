"""
FastAPI application factory for the opphub API server.

Uses lifespan handler for startup/shutdown with async resource management.
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from opphub.config import settings
from opphub.db.session import close_db, init_db
from opphub.errors import OpportunityError
from opphub.logging_config import configure_logging, get_logger
from opphub.redis.client import close_redis, init_redis

from .health import router as health_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup and shutdown."""
    # Startup
    configure_logging(
        json_logs=settings.json_logs,
        log_level=settings.log_level,
        app_name=settings.app_name,
    )
    logger.info("Starting opphub API server", version="0.1.0")

    await init_db()
    logger.info("Database initialized")

    await init_redis()
    logger.info("Redis initialized")

    yield

    # Shutdown
    logger.info("Shutting down opphub API server")
    await close_redis()
    await close_db()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="opphub API",
        description="Opportunities with request/approve membership",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # CORS middleware
    if settings.cors.allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors.allow_origins,
            allow_credentials=settings.cors.allow_credentials,
            allow_methods=settings.cors.allow_methods,
            allow_headers=settings.cors.allow_headers,
        )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Ensure every request has a request ID for logging correlation."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        structlog.contextvars.unbind_contextvars("request_id")

        return response

    @app.exception_handler(OpportunityError)
    async def opportunity_error_handler(request: Request, exc: OpportunityError) -> JSONResponse:
        """Render domain errors with their own status and message."""
        logger.info(
            "Request rejected",
            error=type(exc).__name__,
            detail=exc.message,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error("Unhandled exception", exc_info=exc, path=str(request.url.path))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Health endpoints (no prefix)
    app.include_router(health_router)

    # Opportunity and membership routes
    from opphub.api.routers.opportunities import router as opportunities_router

    app.include_router(opportunities_router, prefix=settings.api_prefix)

    return app


# Application instance
app = create_application()
