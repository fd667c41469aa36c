"""Shared HTTP client management for upstream API calls.

This module provides a singleton-like HTTP client that is initialized
on application startup and shared across all proxy routes for connection
reuse. Every upstream fetch is bounded by ``settings.upstream_timeout`` so a
slow upstream cannot pin a cache-miss path indefinitely.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx

from weatherproxy.app.core.config import Settings, settings as default_settings


# Shared HTTP client for connection pooling
_shared_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client instance.

    Raises:
        RuntimeError: If the HTTP client has not been initialized.
    """
    if _shared_http_client is None:
        raise RuntimeError(
            "HTTP client not initialized. Ensure lifespan context is active."
        )
    return _shared_http_client


def create_http_client(app_settings: Optional[Settings] = None) -> httpx.AsyncClient:
    """Create a new HTTP client with the configured timeouts and pool limits.

    The returned client should be closed when done:
        async with create_http_client() as client:
            ...
    """
    cfg = app_settings or default_settings
    timeout = httpx.Timeout(cfg.upstream_timeout, connect=cfg.httpx_connect_timeout)
    limits = httpx.Limits(
        max_connections=cfg.httpx_max_connections,
        max_keepalive_connections=cfg.httpx_max_keepalive_connections,
        keepalive_expiry=cfg.httpx_keepalive_expiry,
    )
    return httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        headers={"User-Agent": cfg.upstream_user_agent},
    )


@asynccontextmanager
async def init_http_client(
    app_settings: Optional[Settings] = None,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Initialize and yield the shared HTTP client.

    Used in the FastAPI lifespan:

        async with init_http_client():
            yield
    """
    global _shared_http_client

    _shared_http_client = create_http_client(app_settings)
    try:
        yield _shared_http_client
    finally:
        if _shared_http_client is not None:
            await _shared_http_client.aclose()
            _shared_http_client = None
