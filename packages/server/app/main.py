"""
Check-in Buddy API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.core.database import engine
from app.core.errors import (
    ServiceError,
    UpstreamUnavailable,
    request_validation_handler,
    service_error_handler,
)
from app.core.logging import configure_logging
from app.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from app.core.redis import close_redis, get_redis
from app.api.v1 import router as api_v1_router

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Check-in Buddy",
        description="Matching and lifecycle service for check-in jobs between hosts and agents.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware (order matters: last added is outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: the database must answer; Redis is reported but optional."""
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            log.warning("ready.database_unavailable", error=str(exc))
            raise UpstreamUnavailable("Database unavailable") from exc

        redis_ok = True
        try:
            redis = await get_redis()
            await redis.ping()
        except (RedisError, OSError) as exc:
            log.warning("ready.redis_unavailable", error=str(exc))
            redis_ok = False
        return {"status": "ready", "redis": redis_ok}

    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings.log_level, settings.log_format)
        log.info("Check-in Buddy starting", environment=settings.environment)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("Check-in Buddy shutting down")
        await close_redis()

    return app


app = create_app()
