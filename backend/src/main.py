"""
FastAPI application entry point with health endpoints and service routing.

Provides the application factory, CORS and security headers, request-id
correlation and request logging, slowapi rate limiting, exception handlers
and the versioned routers.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.errors import register_exception_handlers
from src.api.limiter import limiter
from src.api.v1.admin import router as admin_router
from src.api.v1.auth import router as auth_router
from src.api.v1.location import router as location_router
from src.api.v1.orders import router as orders_router
from src.api.v1.payments import router as payments_router
from src.api.v1.products import router as products_router
from src.cache.redis_client import close_redis_client
from src.core.config import Settings, get_settings
from src.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    log_performance,
    set_request_id,
)
from src.core.security import get_security_headers
from src.database.connection import (
    check_database_health,
    close_database_connections,
    initialize_database,
)

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan: initialize the database on startup and release
    pooled connections on shutdown.
    """
    settings = get_settings()
    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    with log_performance(logger, "application_startup"):
        await initialize_database()

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await close_redis_client()
        await close_database_connections()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Delivery order platform API",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    security_headers = get_security_headers(settings.is_production)

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        response = await call_next(request)
        for header, value in security_headers.items():
            response.headers[header] = value
        return response

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """
        Set the correlation id, log the request and echo ``X-Request-ID``.
        """
        request_id = set_request_id(request.headers.get("X-Request-ID"))

        logger.info(
            "Request received",
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None,
        )

        try:
            with log_performance(
                logger,
                "request_processing",
                method=request.method,
                path=request.url.path,
            ):
                response = await call_next(request)

            response.headers["X-Request-ID"] = request_id
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            return response
        finally:
            clear_context()

    @app.get("/health", tags=["Health"], summary="Health check endpoint")
    async def health_check() -> dict[str, str]:
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        }

    @app.get("/ready", tags=["Health"], summary="Readiness check endpoint")
    async def readiness_check():
        """
        Readiness probe: 200 when the database answers, 503 otherwise.
        """
        database_ok = await check_database_health(max_retries=1, retry_delay=0)
        if not database_ok:
            logger.warning("Readiness check failed", database="unhealthy")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "not_ready",
                    "service": settings.app_name,
                    "database": "unhealthy",
                },
            )

        return {
            "status": "ready",
            "service": settings.app_name,
            "version": settings.app_version,
            "database": "healthy",
        }

    @app.get("/live", tags=["Health"], summary="Liveness check endpoint")
    async def liveness_check() -> dict[str, str]:
        return {
            "status": "alive",
            "service": settings.app_name,
            "version": settings.app_version,
        }

    for router in (
        auth_router,
        products_router,
        location_router,
        orders_router,
        payments_router,
        admin_router,
    ):
        app.include_router(router, prefix=settings.api_v1_prefix)

    return app


app = create_app()
