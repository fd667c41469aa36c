"""News headline route."""

from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from weatherproxy.app.api.deps import (
    get_cache_registry,
    get_rate_limit_guard,
    get_settings,
    get_upstream_client,
)
from weatherproxy.app.api.responses import CACHE_HIT, CACHE_MISS, proxy_response
from weatherproxy.app.core.cache import CacheRegistry
from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.logging import get_log_context, get_logger
from weatherproxy.app.exceptions import ProxyException
from weatherproxy.app.middleware.rate_limit import RateLimitGuard
from weatherproxy.app.services.news import (
    DEFAULT_COUNTRY,
    DEFAULT_ENDPOINT,
    DEFAULT_PAGE_SIZE,
    fetch_news,
    news_cache_key,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["news"])


@router.get("/news")
async def get_news(
    request: Request,
    endpoint: Optional[str] = None,
    category: Optional[str] = None,
    q: Optional[str] = None,
    country: Optional[str] = None,
    pageSize: Optional[str] = None,
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
    caches: CacheRegistry = Depends(get_cache_registry),
    cfg: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Response:
    """Headlines from NewsAPI.

    Errors use NewsAPI's own envelope (``status``/``message``/``articles``)
    so the client can render an empty list.
    """
    decision = await guard.guard(request)
    if not decision.allowed:
        return decision.response

    endpoint = endpoint or DEFAULT_ENDPOINT
    country = country or DEFAULT_COUNTRY
    page_size = pageSize or DEFAULT_PAGE_SIZE
    cache_control = f"public, s-maxage={cfg.cache_ttl_news}, stale-while-revalidate"

    cache = caches["news"]
    key = news_cache_key(endpoint, q, country, category, page_size)
    cached = cache.get(key)
    if cached is not None:
        logger.debug(
            f"[News] Cache hit for {key}",
            extra=get_log_context(client_key=decision.client_key, cache=CACHE_HIT),
        )
        return proxy_response(cached, decision, CACHE_HIT, cache_control)

    try:
        payload = await fetch_news(
            client,
            cfg,
            endpoint=endpoint,
            query=q,
            country=country,
            category=category,
            page_size=page_size,
        )
    except ProxyException as e:
        logger.warning(f"[News] {e.message} ({e.status_code})")
        return proxy_response(
            {"status": "error", "message": e.message, "articles": []},
            decision,
            status_code=e.status_code,
        )

    cache.set(key, payload, cfg.cache_ttl_news)
    return proxy_response(payload, decision, CACHE_MISS, cache_control)
