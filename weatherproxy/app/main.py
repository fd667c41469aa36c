from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from weatherproxy import __version__
from weatherproxy.app.api import aviation_router, news_router, status_router, weather_router
from weatherproxy.app.core.cache import CacheRegistry
from weatherproxy.app.core.config import Settings, settings
from weatherproxy.app.core.http_client import init_http_client
from weatherproxy.app.core.logging import get_logger, setup_logging
from weatherproxy.app.exceptions import ProxyException, UpstreamError
from weatherproxy.app.middleware.auth import AuthProvider, create_auth_provider
from weatherproxy.app.middleware.rate_limit import (
    RateLimitBackend,
    RateLimitGuard,
    create_rate_limit_store,
)
from weatherproxy.app.middleware.request_id import RequestIdMiddleware

RATE_LIMIT_HEADERS = [
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
    "X-RateLimit-Burst-Limit",
    "X-RateLimit-Burst-Remaining",
    "X-RateLimit-Burst-Reset",
    "Retry-After",
]


def create_app(
    app_settings: Optional[Settings] = None,
    auth_provider: Optional[AuthProvider] = None,
    rate_limit_store: Optional[RateLimitBackend] = None,
    caches: Optional[CacheRegistry] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The rate limit store, the response caches and the auth provider are
    process-wide and live on ``app.state``. Tests pass their own instances
    (for example with a fake clock).

    Returns:
        Configured FastAPI application instance
    """
    cfg = app_settings or settings

    # Setup logging
    setup_logging(cfg)
    logger = get_logger(__name__)

    store = rate_limit_store if rate_limit_store is not None else create_rate_limit_store(cfg)
    auth = auth_provider if auth_provider is not None else create_auth_provider(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Application lifespan context manager.

        Opens the shared upstream HTTP client and the rate limit sweeper on
        startup and closes both on shutdown.
        """
        async with init_http_client(cfg) as http_client:
            await store.start()
            logger.info(
                "Application startup complete",
                extra={
                    "hourly_limit": store.hourly_limit,
                    "burst_limit": store.burst_limit,
                    "debug_mode": cfg.debug,
                },
            )

            yield {"http_client": http_client}

            await store.stop()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Weather Proxy",
        description="Rate-limited, cached proxy for weather, aviation, pollen and news upstreams",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = cfg
    app.state.rate_limit_store = store
    app.state.rate_limit_guard = RateLimitGuard(store, auth)
    app.state.caches = caches if caches is not None else CacheRegistry()
    app.state.auth_provider = auth

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Cache", "X-AQI-Source", *RATE_LIMIT_HEADERS],
        max_age=600,
    )

    # Request ID middleware for tracing (innermost - closest to route)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(aviation_router)
    app.include_router(weather_router)
    app.include_router(news_router)
    app.include_router(status_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with cache occupancy and tracked rate limit keys."""
        return {
            "status": "ok",
            "components": {
                "rate_limit": {
                    "status": "ok" if getattr(store, "running", True) else "stopped",
                    "tracked_clients": len(store) if hasattr(store, "__len__") else None,
                },
                "cache": {"status": "ok", "entries": app.state.caches.sizes()},
                "auth": {"configured": cfg.supabase_configured},
            },
        }

    @app.exception_handler(ProxyException)
    async def proxy_exception_handler(request: Request, exc: ProxyException) -> JSONResponse:
        """Convert proxy exceptions into ``{"error": message}`` responses.

        Requests already charged by the rate limit guard keep their quota
        headers.
        """
        content: dict[str, Any] = {"error": exc.message}
        if isinstance(exc, UpstreamError) and exc.detail:
            content["detail"] = exc.detail
        headers = dict(getattr(request.state, "rate_limit_headers", None) or {})
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        The traceback is logged server-side and never returned to the client.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "exception_type": type(exc).__name__,
            },
        )

        if cfg.debug:
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal server error",
                    "message": str(exc),
                    "exception_type": type(exc).__name__,
                    "request_id": request_id,
                },
            )

        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "request_id": request_id},
        )

    return app


# Create the application instance
app = create_app()
