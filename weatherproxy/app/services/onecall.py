"""OpenWeatherMap One Call 3.0 forwarding."""

from typing import Any, Dict, Optional

import httpx

from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.logging import get_logger
from weatherproxy.app.exceptions import UpstreamError, UpstreamNotConfiguredError

logger = get_logger(__name__)

DEFAULT_UNITS = "imperial"
MINUTELY_EXCLUDE = "current,hourly,daily,alerts"

_STATUS_MESSAGES = {
    400: "Bad Request",
    401: "Unauthorized (API key)",
    404: "Not Found",
    429: "Too Many Requests",
}


def upstream_error_for(response: httpx.Response) -> UpstreamError:
    """Map a failed One Call response to the error the client sees."""
    message = _STATUS_MESSAGES.get(response.status_code, "Weather service unavailable")
    return UpstreamError(
        "openweather",
        message,
        status_code=response.status_code,
        upstream_status=response.status_code,
        detail=response.text,
    )


async def fetch_onecall(
    client: httpx.AsyncClient,
    cfg: Settings,
    lat: float,
    lon: float,
    units: str = DEFAULT_UNITS,
    exclude: Optional[str] = None,
) -> Dict[str, Any]:
    if not cfg.openweather_api_key:
        raise UpstreamNotConfiguredError("OpenWeather")

    params: Dict[str, Any] = {
        "lat": lat,
        "lon": lon,
        "units": units,
        "appid": cfg.openweather_api_key,
    }
    if exclude:
        params["exclude"] = exclude

    try:
        response = await client.get(f"{cfg.openweather_base_url}/3.0/onecall", params=params)
    except httpx.HTTPError as e:
        logger.error(f"[OneCall] Request failed: {e}")
        raise UpstreamError("openweather", "Weather service unavailable") from e

    if response.status_code >= 400:
        logger.warning(f"[OneCall] Upstream returned {response.status_code}")
        raise upstream_error_for(response)

    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError("openweather", "Weather service unavailable") from e


async def fetch_minutely(
    client: httpx.AsyncClient,
    cfg: Settings,
    lat: float,
    lon: float,
    units: str = DEFAULT_UNITS,
) -> Dict[str, Any]:
    """Minute-by-minute precipitation for the next hour."""
    data = await fetch_onecall(client, cfg, lat, lon, units=units, exclude=MINUTELY_EXCLUDE)
    return {
        "lat": data.get("lat"),
        "lon": data.get("lon"),
        "units": units,
        "minutely": data.get("minutely") or [],
    }
