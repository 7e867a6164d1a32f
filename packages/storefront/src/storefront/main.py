"""Storefront API Server."""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from starlette.middleware.authentication import AuthenticationMiddleware

from storefront import __version__
from storefront.auth import ApiKeyAuthBackend
from storefront.config import Settings, get_settings
from storefront.db.session import get_database, init_database, reset_database
from storefront.logging import configure_logging
from storefront.middleware import (
    AdminAuthorizationMiddleware,
    ExceptionTranslationMiddleware,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
)
from storefront.routes import admin_router, health_router
from storefront.services.health import build_health_aggregator
from storefront.services.metrics import MetricsFlushService, MetricsStore
from storefront.services.rate_limit import FixedWindowRateLimiter
from storefront.services.sampler import ProcessSampler

logger = logging.getLogger(__name__)


class AppResponse(BaseModel):
    """App response."""

    name: str = "Storefront API"
    version: str = __version__
    docs: str = "/docs"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    configure_logging(
        log_format=settings.log_format,
        debug=settings.debug,
        log_dir=settings.log_dir if settings.log_file_enabled else None,
    )

    # Startup
    logger.info("Starting Storefront API server (env=%s)...", settings.env.value)

    db = init_database(settings.effective_database_url)
    await db.connect()
    logger.info("Database engine ready")

    flush = MetricsFlushService(
        app.state.metrics,
        interval_seconds=settings.metrics_flush_interval_seconds,
    )
    await flush.start()
    app.state.metrics_flush = flush

    yield

    # Shutdown
    logger.info("Shutting down Storefront API server...")
    await flush.stop()

    await get_database().disconnect()
    reset_database()
    logger.info("Database disconnected")


def cors_options(settings: Settings) -> dict[str, Any]:
    """Restricted origins with credentials in development, any origin otherwise."""
    if settings.is_development:
        return {
            "allow_origins": settings.cors_dev_origins_list,
            "allow_credentials": True,
            "allow_methods": ["*"],
            "allow_headers": ["*"],
        }
    return {
        "allow_origins": ["*"],
        "allow_credentials": False,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }


def install_pipeline(
    app: FastAPI,
    settings: Settings,
    *,
    metrics: MetricsStore,
    limiter: FixedWindowRateLimiter,
) -> None:
    """Install the request pipeline.

    Starlette wraps each added middleware around the previous ones, so they
    are added innermost first. Resulting order, outermost first: request
    logging, exception translation, rate limiting, CORS, authentication,
    admin authorization, routing.
    """
    app.add_middleware(AdminAuthorizationMiddleware)
    app.add_middleware(
        AuthenticationMiddleware, backend=ApiKeyAuthBackend.from_settings(settings)
    )
    app.add_middleware(CORSMiddleware, **cors_options(settings))
    if settings.rate_limit_enabled:
        app.add_middleware(RateLimitMiddleware, limiter=limiter)
    else:
        logger.info("Rate limiting disabled (set STOREFRONT_RATE_LIMIT_ENABLED=true to enable)")
    app.add_middleware(ExceptionTranslationMiddleware)
    app.add_middleware(RequestLoggingMiddleware, metrics=metrics)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API with one metrics store, sampler, limiter and health aggregator."""
    settings = settings or get_settings()

    sampler = ProcessSampler()
    metrics = MetricsStore(
        sampler,
        slow_call_ms=settings.metrics_slow_call_ms,
        slow_query_ms=settings.metrics_slow_query_ms,
    )
    limiter = FixedWindowRateLimiter.from_strings(
        login=settings.rate_limit_login,
        register=settings.rate_limit_register,
        general=settings.rate_limit_general,
        refresh_token=settings.rate_limit_refresh_token,
        forgot_password=settings.rate_limit_forgot_password,
        reset_password=settings.rate_limit_reset_password,
        cleanup_interval_seconds=settings.rate_limit_cleanup_interval_seconds,
    )
    health = build_health_aggregator(
        settings, sampler=sampler, database=get_database, metrics=metrics
    )

    app = FastAPI(
        title="Storefront API",
        description="Storefront request metering, health checks and rate limiting",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.sampler = sampler
    app.state.metrics = metrics
    app.state.rate_limiter = limiter
    app.state.health = health

    install_pipeline(app, settings, metrics=metrics, limiter=limiter)

    app.include_router(health_router)
    app.include_router(admin_router)

    @app.get("/", response_model=AppResponse)
    async def root() -> AppResponse:
        return AppResponse(version=settings.version)

    return app


app = create_app()


def main():
    """Run the server."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "storefront.main:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
