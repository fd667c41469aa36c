"""Weather routes backed by OpenWeatherMap and Google Pollen and Air Quality.

Every route consults the rate limit guard before touching its cache or the
upstream. Only successful upstream results are cached.
"""

from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from weatherproxy.app.api.deps import (
    get_cache_registry,
    get_rate_limit_guard,
    get_settings,
    get_upstream_client,
    parse_coordinates,
)
from weatherproxy.app.api.responses import CACHE_HIT, CACHE_MISS, proxy_response
from weatherproxy.app.core.cache import CacheRegistry, coordinate_cache_key
from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.logging import get_log_context, get_logger
from weatherproxy.app.exceptions import AuthenticationError, UpstreamNotConfiguredError
from weatherproxy.app.middleware.rate_limit import RateLimitGuard
from weatherproxy.app.services.air_quality import SOURCE_ERROR, fetch_air_quality
from weatherproxy.app.services.onecall import DEFAULT_UNITS, fetch_minutely, fetch_onecall
from weatherproxy.app.services.pollen import UNAVAILABLE, fetch_pollen
from weatherproxy.app.services.precipitation import (
    build_precipitation_history,
    build_precipitation_summary,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/api/weather", tags=["weather"])

PRECIPITATION_CACHE_CONTROL = "public, s-maxage=900, stale-while-revalidate=1800"
HISTORY_CACHE_CONTROL = "private, max-age=3600"
POLLEN_CACHE_CONTROL = "public, s-maxage=1800"
AIR_QUALITY_CACHE_CONTROL = "public, s-maxage=600, stale-while-revalidate"
ONECALL_CACHE_CONTROL = "public, max-age=60, s-maxage=60"
MINUTELY_CACHE_CONTROL = "public, max-age=30, s-maxage=30"


def require_openweather_key(cfg: Settings) -> None:
    if not cfg.openweather_api_key:
        raise UpstreamNotConfiguredError("OpenWeather")


def _log_hit(domain: str, key: str, client_key: str) -> None:
    logger.debug(
        f"[{domain}] Cache hit for {key}",
        extra=get_log_context(client_key=client_key, cache=CACHE_HIT),
    )


@router.get("/precipitation")
async def get_precipitation(
    request: Request,
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    city: Optional[str] = None,
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
    caches: CacheRegistry = Depends(get_cache_registry),
    cfg: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Response:
    """Rain and snow totals for the last 24h/48h/7d plus an 8-day outlook."""
    decision = await guard.guard(request)
    if not decision.allowed:
        return decision.response

    require_openweather_key(cfg)
    latitude, longitude = parse_coordinates(lat, lon)

    cache = caches["precipitation"]
    key = coordinate_cache_key(latitude, longitude)
    cached = cache.get(key)
    if cached is not None:
        _log_hit("Precipitation", key, decision.client_key)
        return proxy_response(cached, decision, CACHE_HIT, PRECIPITATION_CACHE_CONTROL)

    payload, has_data = await build_precipitation_summary(client, cfg, latitude, longitude, city)
    if has_data:
        cache.set(key, payload, cfg.cache_ttl_precipitation)
    else:
        logger.warning(f"[Precipitation] No upstream data for {key}, not caching")
    return proxy_response(payload, decision, CACHE_MISS, PRECIPITATION_CACHE_CONTROL)


@router.get("/precipitation-history")
async def get_precipitation_history(
    request: Request,
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
    caches: CacheRegistry = Depends(get_cache_registry),
    cfg: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Response:
    """Last 24 hours of hourly precipitation, for signed-in users only."""
    decision = await guard.guard(request)
    if not decision.allowed:
        return decision.response

    if decision.user is None:
        raise AuthenticationError("Authentication required for precipitation history")

    require_openweather_key(cfg)
    latitude, longitude = parse_coordinates(lat, lon)

    cache = caches["precipitation_history"]
    key = coordinate_cache_key(latitude, longitude)
    cached = cache.get(key)
    if cached is not None:
        _log_hit("PrecipitationHistory", key, decision.client_key)
        return proxy_response(cached, decision, CACHE_HIT, HISTORY_CACHE_CONTROL)

    payload = await build_precipitation_history(client, cfg, latitude, longitude)
    if payload["dataAvailable"]:
        cache.set(key, payload, cfg.cache_ttl_precipitation_history)
    return proxy_response(payload, decision, CACHE_MISS, HISTORY_CACHE_CONTROL)


@router.get("/pollen")
async def get_pollen(
    request: Request,
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
    caches: CacheRegistry = Depends(get_cache_registry),
    cfg: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Response:
    """Tree, grass and weed pollen levels."""
    decision = await guard.guard(request)
    if not decision.allowed:
        return decision.response

    require_openweather_key(cfg)
    latitude, longitude = parse_coordinates(
        lat, lon, invalid_message="Invalid coordinates provided", check_range=True
    )

    cache = caches["pollen"]
    key = coordinate_cache_key(latitude, longitude)
    cached = cache.get(key)
    if cached is not None:
        _log_hit("Pollen", key, decision.client_key)
        return proxy_response(cached, decision, CACHE_HIT, POLLEN_CACHE_CONTROL)

    payload = await fetch_pollen(client, cfg, latitude, longitude)
    if payload is None:
        logger.warning(f"[Pollen] All sources failed for {key}")
        return proxy_response(dict(UNAVAILABLE), decision, CACHE_MISS)

    cache.set(key, payload, cfg.cache_ttl_pollen)
    return proxy_response(payload, decision, CACHE_MISS, POLLEN_CACHE_CONTROL)


@router.get("/air-quality")
async def get_air_quality(
    request: Request,
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
    caches: CacheRegistry = Depends(get_cache_registry),
    cfg: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Response:
    """US EPA air quality index.

    Upstream failures are reported as a 200 with ``source: "error"`` and are
    never cached.
    """
    decision = await guard.guard(request)
    if not decision.allowed:
        return decision.response

    latitude, longitude = parse_coordinates(lat, lon)

    cache = caches["air_quality"]
    key = coordinate_cache_key(latitude, longitude)
    cached = cache.get(key)
    if cached is not None:
        _log_hit("AirQuality", key, decision.client_key)
        response = proxy_response(cached, decision, CACHE_HIT, AIR_QUALITY_CACHE_CONTROL)
        response.headers["X-AQI-Source"] = cached["source"]
        return response

    payload = await fetch_air_quality(client, cfg, latitude, longitude)
    if payload["source"] == SOURCE_ERROR:
        logger.warning(f"[AirQuality] No source available for {key}: {payload['error']}")
        return proxy_response(payload, decision, CACHE_MISS)

    cache.set(key, payload, cfg.cache_ttl_air_quality)
    response = proxy_response(payload, decision, CACHE_MISS, AIR_QUALITY_CACHE_CONTROL)
    response.headers["X-AQI-Source"] = payload["source"]
    return response


@router.get("/onecall")
async def get_onecall(
    request: Request,
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    units: str = DEFAULT_UNITS,
    exclude: Optional[str] = None,
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
    caches: CacheRegistry = Depends(get_cache_registry),
    cfg: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Response:
    """Forward a One Call 3.0 request."""
    decision = await guard.guard(request)
    if not decision.allowed:
        return decision.response

    require_openweather_key(cfg)
    latitude, longitude = parse_coordinates(
        lat, lon, invalid_message="Invalid coordinates provided", check_range=True
    )

    cache = caches["weather"]
    key = f"{coordinate_cache_key(latitude, longitude)}|{units}|{exclude or ''}"
    cached = cache.get(key)
    if cached is not None:
        _log_hit("OneCall", key, decision.client_key)
        return proxy_response(cached, decision, CACHE_HIT, ONECALL_CACHE_CONTROL)

    payload = await fetch_onecall(client, cfg, latitude, longitude, units=units, exclude=exclude)
    cache.set(key, payload, cfg.cache_ttl_weather)
    return proxy_response(payload, decision, CACHE_MISS, ONECALL_CACHE_CONTROL)


@router.get("/onecall/minutely")
async def get_minutely(
    request: Request,
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    units: str = DEFAULT_UNITS,
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
    cfg: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Response:
    """Minute-level precipitation for the next hour. Not cached server-side."""
    decision = await guard.guard(request)
    if not decision.allowed:
        return decision.response

    require_openweather_key(cfg)
    latitude, longitude = parse_coordinates(lat, lon, invalid_message="Invalid coordinates provided")

    payload = await fetch_minutely(client, cfg, latitude, longitude, units=units)
    return proxy_response(payload, decision, cache_control=MINUTELY_CACHE_CONTROL)
