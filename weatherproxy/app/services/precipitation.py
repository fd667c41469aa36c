"""Precipitation totals from OpenWeatherMap.

Two products are built here:

* a public summary with 24h/48h/7d rain and snow totals, an estimated snow
  depth and an eight-day outlook (One Call 3.0 ``day_summary`` + daily
  forecast);
* a signed-in-user history with the last 24 hours of hourly precipitation
  (One Call 3.0 ``timemachine``).

Individual upstream failures degrade to zero totals; callers use the
``success`` flags to decide whether a result may be cached.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.logging import get_logger

logger = get_logger(__name__)

MM_PER_INCH = 25.4
SNOW_TEMPERATURE_C = 2.0
DAY_SUMMARY_BATCH_SIZE = 3
HISTORY_OFFSETS_HOURS = (24, 16, 8)


def mm_to_inches(mm: float) -> float:
    return round(mm / MM_PER_INCH, 2)


def mm_to_inches_snow(mm: float) -> float:
    return round(mm / MM_PER_INCH, 1)


def estimate_snow_depth(snow_7d: float, avg_temp_f: float = 30) -> float:
    """Rough snow depth: most of the weekly snowfall survives in the cold."""
    if avg_temp_f <= 32:
        melt_factor = 0.7
    elif avg_temp_f <= 40:
        melt_factor = 0.4
    else:
        melt_factor = 0.2
    return round(snow_7d * melt_factor, 1)


@dataclass
class DaySummary:
    rain: float = 0.0
    snow: float = 0.0
    success: bool = False


async def _get_json(client: httpx.AsyncClient, url: str, params: Dict[str, Any]) -> Optional[Any]:
    """GET and decode JSON, returning None on any transport or HTTP failure."""
    try:
        response = await client.get(url, params=params)
    except httpx.HTTPError as e:
        logger.warning(f"[Precipitation] Upstream request failed: {e}")
        return None
    if response.status_code >= 400:
        logger.warning(f"[Precipitation] Upstream returned {response.status_code} for {url}")
        return None
    try:
        return response.json()
    except ValueError:
        return None


async def fetch_day_summary(
    client: httpx.AsyncClient, cfg: Settings, lat: float, lon: float, date: str
) -> DaySummary:
    data = await _get_json(
        client,
        f"{cfg.openweather_base_url}/3.0/onecall/day_summary",
        {"lat": lat, "lon": lon, "date": date, "units": "metric", "appid": cfg.openweather_api_key},
    )
    if not isinstance(data, dict):
        return DaySummary()

    total_mm = (data.get("precipitation") or {}).get("total") or 0
    temperature = data.get("temperature") or {}
    max_c, min_c = temperature.get("max"), temperature.get("min")
    if max_c is not None and min_c is not None:
        avg_c = (max_c + min_c) / 2
    else:
        avg_c = max_c or 0

    is_snow = avg_c <= SNOW_TEMPERATURE_C
    return DaySummary(
        rain=0.0 if is_snow else total_mm,
        snow=total_mm if is_snow else 0.0,
        success=True,
    )


async def fetch_current_conditions(
    client: httpx.AsyncClient, cfg: Settings, lat: float, lon: float
) -> Optional[Dict[str, float]]:
    data = await _get_json(
        client,
        f"{cfg.openweather_base_url}/2.5/weather",
        {"lat": lat, "lon": lon, "units": "metric", "appid": cfg.openweather_api_key},
    )
    if not isinstance(data, dict):
        return None
    return {
        "timezone_offset": data.get("timezone") or 0,
        "rain_1h": (data.get("rain") or {}).get("1h") or 0,
        "snow_1h": (data.get("snow") or {}).get("1h") or 0,
    }


async def fetch_forecast(
    client: httpx.AsyncClient, cfg: Settings, lat: float, lon: float
) -> List[Dict[str, Any]]:
    data = await _get_json(
        client,
        f"{cfg.openweather_base_url}/3.0/onecall",
        {
            "lat": lat,
            "lon": lon,
            "units": "metric",
            "exclude": "current,minutely,hourly,alerts",
            "appid": cfg.openweather_api_key,
        },
    )
    if not isinstance(data, dict):
        return []

    forecast = []
    for day in (data.get("daily") or [])[:8]:
        date = datetime.fromtimestamp(day["dt"], tz=timezone.utc).strftime("%Y-%m-%d")
        forecast.append({
            "date": date,
            "expectedSnow": mm_to_inches_snow(day.get("snow") or 0),
            "expectedRain": mm_to_inches(day.get("rain") or 0),
            "probability": round((day.get("pop") or 0) * 100),
        })
    return forecast


async def get_multi_day_precipitation(
    client: httpx.AsyncClient,
    cfg: Settings,
    lat: float,
    lon: float,
    timezone_offset: int,
    now: Optional[datetime] = None,
) -> Tuple[Dict[str, float], bool]:
    """Sum day summaries for the last seven local days.

    Returns the totals in inches and whether any day summary succeeded.
    """
    now = now or datetime.now(timezone.utc)
    local_now = now + timedelta(seconds=timezone_offset)
    dates = [
        (local_now - timedelta(days=i)).strftime("%Y-%m-%d") for i in range(7)
    ]

    # Batches of three keep us under the upstream's burst allowance
    results: List[DaySummary] = []
    for i in range(0, len(dates), DAY_SUMMARY_BATCH_SIZE):
        batch = dates[i:i + DAY_SUMMARY_BATCH_SIZE]
        results.extend(await asyncio.gather(
            *(fetch_day_summary(client, cfg, lat, lon, date) for date in batch)
        ))

    today_weight = local_now.hour / 24
    yesterday_weight = 1 - today_weight

    today, yesterday = results[0], results[1]
    if today.success and yesterday.success:
        rain_24h = today.rain * today_weight + yesterday.rain * yesterday_weight
        snow_24h = today.snow * today_weight + yesterday.snow * yesterday_weight
    elif today.success:
        rain_24h, snow_24h = today.rain, today.snow
    else:
        rain_24h = snow_24h = 0.0

    rain_48h = sum(r.rain for r in results[:2] if r.success)
    snow_48h = sum(r.snow for r in results[:2] if r.success)
    rain_7d = sum(r.rain for r in results if r.success)
    snow_7d = sum(r.snow for r in results if r.success)

    totals = {
        "rain24h": mm_to_inches(rain_24h),
        "rain48h": mm_to_inches(rain_48h),
        "rain7d": mm_to_inches(rain_7d),
        "snow24h": mm_to_inches_snow(snow_24h),
        "snow48h": mm_to_inches_snow(snow_48h),
        "snow7d": mm_to_inches_snow(snow_7d),
    }
    return totals, any(r.success for r in results)


async def build_precipitation_summary(
    client: httpx.AsyncClient,
    cfg: Settings,
    lat: float,
    lon: float,
    city: Optional[str] = None,
) -> Tuple[Dict[str, Any], bool]:
    """Build the public precipitation summary.

    Returns the payload and whether it is backed by real upstream data.
    """
    current = await fetch_current_conditions(client, cfg, lat, lon)
    timezone_offset = int(current["timezone_offset"]) if current else 0

    (totals, history_ok), forecast = await asyncio.gather(
        get_multi_day_precipitation(client, cfg, lat, lon, timezone_offset),
        fetch_forecast(client, cfg, lat, lon),
    )

    payload = {
        "location": city or f"{lat:.4f}, {lon:.4f}",
        "coordinates": {"lat": lat, "lon": lon},
        "current": {
            "snowDepth": estimate_snow_depth(totals["snow7d"]),
            "snowfall24h": totals["snow24h"],
            "snowfall48h": totals["snow48h"],
            "snowfall7d": totals["snow7d"],
            "rainfall24h": totals["rain24h"],
            "rainfall48h": totals["rain48h"],
            "rainfall7d": totals["rain7d"],
        },
        "forecast": forecast,
        "source": "OpenWeatherMap One Call 3.0",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }
    return payload, history_ok or bool(forecast)


async def fetch_historical_precipitation(
    client: httpx.AsyncClient,
    cfg: Settings,
    lat: float,
    lon: float,
    now: Optional[int] = None,
) -> Dict[str, Any]:
    """Sum hourly rain and snow over the last 24 hours.

    Overlapping timemachine responses are de-duplicated by hour.
    """
    now = now if now is not None else int(time.time())
    window_start = now - 24 * 3600
    total_rain_mm = 0.0
    total_snow_mm = 0.0
    successful_calls = 0
    seen_hours: set[int] = set()

    for hours_ago in HISTORY_OFFSETS_HOURS:
        data = await _get_json(
            client,
            f"{cfg.openweather_base_url}/3.0/onecall/timemachine",
            {
                "lat": lat,
                "lon": lon,
                "dt": now - hours_ago * 3600,
                "units": "imperial",
                "appid": cfg.openweather_api_key,
            },
        )
        if not isinstance(data, dict):
            continue
        successful_calls += 1

        for hour in data.get("data") or []:
            dt = hour.get("dt")
            if dt is None or dt in seen_hours or dt < window_start or dt > now:
                continue
            seen_hours.add(dt)
            total_rain_mm += (hour.get("rain") or {}).get("1h") or 0
            total_snow_mm += (hour.get("snow") or {}).get("1h") or 0

    # Convert once, after summing, to avoid accumulated rounding
    return {
        "rain24h": mm_to_inches(total_rain_mm),
        "snow24h": mm_to_inches_snow(total_snow_mm),
        "dataAvailable": successful_calls > 0,
    }


async def build_precipitation_history(
    client: httpx.AsyncClient, cfg: Settings, lat: float, lon: float
) -> Dict[str, Any]:
    current, historical = await asyncio.gather(
        fetch_current_conditions(client, cfg, lat, lon),
        fetch_historical_precipitation(client, cfg, lat, lon),
    )
    return {
        "currentRain": mm_to_inches(current["rain_1h"]) if current else 0,
        "currentSnow": mm_to_inches(current["snow_1h"]) if current else 0,
        "rain24h": historical["rain24h"],
        "snow24h": historical["snow24h"],
        "lastUpdated": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "dataSource": "timemachine",
        "dataAvailable": historical["dataAvailable"],
    }
