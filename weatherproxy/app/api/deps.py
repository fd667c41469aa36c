"""FastAPI dependencies for the proxy routes.

The rate limit guard and caches are created once in
``create_app()`` and live on ``app.state``; routes receive them through
these dependencies so tests can swap them per app instance.
"""

from typing import Optional, Tuple

import httpx
from fastapi import Request

from weatherproxy.app.core.cache import CacheRegistry
from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.http_client import get_http_client
from weatherproxy.app.exceptions import InvalidParameterError
from weatherproxy.app.middleware.rate_limit import RateLimitGuard


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_rate_limit_guard(request: Request) -> RateLimitGuard:
    return request.app.state.rate_limit_guard


def get_cache_registry(request: Request) -> CacheRegistry:
    return request.app.state.caches


def get_upstream_client() -> httpx.AsyncClient:
    return get_http_client()


def parse_coordinates(
    lat: Optional[str],
    lon: Optional[str],
    invalid_message: str = "Invalid coordinates",
    check_range: bool = False,
) -> Tuple[float, float]:
    """Parse ``lat``/``lon`` query strings.

    Raises:
        InvalidParameterError: when either value is missing, not a number,
            or (with ``check_range``) outside the valid range.
    """
    if not lat or not lon:
        raise InvalidParameterError("Missing required parameters: lat, lon")
    try:
        latitude, longitude = float(lat), float(lon)
    except ValueError:
        raise InvalidParameterError(invalid_message)
    if latitude != latitude or longitude != longitude:
        raise InvalidParameterError(invalid_message)
    if check_range and (abs(latitude) > 90 or abs(longitude) > 180):
        raise InvalidParameterError("Coordinates out of valid range")
    return latitude, longitude
