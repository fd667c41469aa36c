"""Aviation weather routes."""

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
from weatherproxy.app.exceptions import InvalidParameterError
from weatherproxy.app.middleware.rate_limit import RateLimitGuard
from weatherproxy.app.services.metar import ICAO_PATTERN, fetch_metar

logger = get_logger(__name__)
router = APIRouter(prefix="/api/aviation", tags=["aviation"])

METAR_CACHE_CONTROL = "public, s-maxage=600, stale-while-revalidate=1200"


@router.get("/metar")
async def get_metar(
    request: Request,
    station: Optional[str] = None,
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
    caches: CacheRegistry = Depends(get_cache_registry),
    cfg: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Response:
    """Latest METAR observation for a 4-letter ICAO station."""
    decision = await guard.guard(request)
    if not decision.allowed:
        return decision.response

    station = (station or "").upper()
    if not station:
        raise InvalidParameterError("Missing required parameter: station (ICAO code)")
    if not ICAO_PATTERN.match(station):
        raise InvalidParameterError(
            "Invalid station format. Must be 4-letter ICAO code (e.g., KJFK)"
        )

    cache = caches["metar"]
    cached = cache.get(station)
    if cached is not None:
        logger.debug(
            f"[METAR] Cache hit for {station}",
            extra=get_log_context(client_key=decision.client_key, cache=CACHE_HIT),
        )
        return proxy_response(cached, decision, CACHE_HIT, METAR_CACHE_CONTROL)

    payload = await fetch_metar(client, cfg, station)
    cache.set(station, payload, cfg.cache_ttl_metar)
    return proxy_response(payload, decision, CACHE_MISS, METAR_CACHE_CONTROL)
