"""Air quality index from Google Air Quality with an OpenWeather fallback.

Both sources are normalised to the US EPA 0-500 scale.
"""

import math
from typing import Any, Dict, List, Optional, Tuple

import httpx

from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.logging import get_logger

logger = get_logger(__name__)

SOURCE_GOOGLE = "google"
SOURCE_OPENWEATHER = "openweather"
SOURCE_ERROR = "error"

# (concentration low, concentration high, aqi low, aqi high), in ug/m3
PM25_BREAKPOINTS: List[Tuple[float, float, int, int]] = [
    (0.0, 12.0, 0, 50),
    (12.1, 35.4, 51, 100),
    (35.5, 55.4, 101, 150),
    (55.5, 150.4, 151, 200),
    (150.5, 250.4, 201, 300),
    (250.5, 350.4, 301, 400),
    (350.5, 500.4, 401, 500),
]

PM10_BREAKPOINTS: List[Tuple[float, float, int, int]] = [
    (0, 54, 0, 50),
    (55, 154, 51, 100),
    (155, 254, 101, 150),
    (255, 354, 151, 200),
    (355, 424, 201, 300),
    (425, 504, 301, 400),
    (505, 604, 401, 500),
]

# OpenWeather's 1-5 index mapped onto the EPA scale
OPENWEATHER_INDEX_TO_EPA = {1: 25, 2: 75, 3: 125, 4: 175, 5: 250}

COMPONENT_NAMES = {
    "pm2_5": "pm25",
    "pm10": "pm10",
    "o3": "o3",
    "no2": "no2",
    "so2": "so2",
    "co": "co",
}


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


def aqi_category(aqi: float) -> str:
    if aqi <= 50:
        return "Good"
    if aqi <= 100:
        return "Moderate"
    if aqi <= 150:
        return "Unhealthy for Sensitive Groups"
    if aqi <= 200:
        return "Unhealthy"
    if aqi <= 300:
        return "Very Unhealthy"
    return "Hazardous"


def concentration_to_aqi(
    concentration: float, breakpoints: List[Tuple[float, float, int, int]]
) -> int:
    """Linear EPA interpolation; 500 beyond the last breakpoint.

    A value that falls between two published ranges (e.g. 12.05 ug/m3 of
    PM2.5) is interpolated in the next range up.
    """
    for c_low, c_high, aqi_low, aqi_high in breakpoints:
        if concentration <= c_high:
            c = max(concentration, c_low)
            return _round((aqi_high - aqi_low) / (c_high - c_low) * (c - c_low) + aqi_low)
    return 500


def error_payload(message: str) -> Dict[str, Any]:
    return {"aqi": 0, "category": "No Data", "source": SOURCE_ERROR, "error": message}


def _select_index(indexes: List[Dict[str, Any]]) -> Tuple[Optional[Dict[str, Any]], bool]:
    """Pick US EPA, then Universal AQI, then whatever came first.

    The flag is True when the Universal AQI was chosen and needs converting.
    """
    def display_name(index: Dict[str, Any]) -> str:
        return (index.get("displayName") or "").lower()

    us_epa = next(
        (i for i in indexes if i.get("code") in ("usa_epa", "US_EPA") or "us epa" in display_name(i)),
        None,
    )
    if us_epa is not None:
        return us_epa, False
    universal = next(
        (i for i in indexes if i.get("code") == "uaqi" or "universal" in display_name(i)),
        None,
    )
    if universal is not None:
        return universal, True
    return (indexes[0] if indexes else None), False


def parse_google_air_quality(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    indexes = data.get("indexes")
    if not isinstance(indexes, list):
        return None

    selected, is_universal = _select_index(indexes)
    if not selected or not selected.get("aqi"):
        return None

    aqi = selected["aqi"]
    category = selected.get("category") or aqi_category(aqi)
    if is_universal:
        # Universal AQI runs 100 (excellent) to 0 (hazardous)
        aqi = _round((100 - aqi) * 3)
        category = aqi_category(aqi)

    return {
        "aqi": aqi,
        "category": category,
        "dominantPollutant": selected.get("dominantPollutant"),
        "source": SOURCE_GOOGLE,
        "indexType": selected.get("code") or SOURCE_GOOGLE,
        "healthRecommendations": (data.get("healthRecommendations") or {}).get("generalPopulation"),
        "pollutants": data.get("pollutants") or [],
    }


def parse_openweather_air_pollution(data: Dict[str, Any]) -> Dict[str, Any]:
    reading = (data.get("list") or [{}])[0]
    index = (reading.get("main") or {}).get("aqi") or 1
    components = reading.get("components") or {}

    pm25 = components.get("pm2_5")
    pm10 = components.get("pm10")
    if pm25 or pm10:
        aqi = max(
            concentration_to_aqi(pm25 or 0, PM25_BREAKPOINTS),
            concentration_to_aqi(pm10 or 0, PM10_BREAKPOINTS),
        )
    else:
        aqi = OPENWEATHER_INDEX_TO_EPA.get(index, 50)

    return {
        "aqi": aqi,
        "category": aqi_category(aqi),
        "source": SOURCE_OPENWEATHER,
        "components": {
            name: components[raw] for raw, name in COMPONENT_NAMES.items() if raw in components
        },
    }


async def fetch_google_air_quality(
    client: httpx.AsyncClient, cfg: Settings, lat: float, lon: float
) -> Optional[Dict[str, Any]]:
    if not cfg.google_air_quality_api_key:
        return None
    try:
        response = await client.post(
            cfg.google_air_quality_url,
            params={"key": cfg.google_air_quality_api_key},
            json={
                "location": {"latitude": lat, "longitude": lon},
                "extraComputations": [
                    "LOCAL_AQI",
                    "HEALTH_RECOMMENDATIONS",
                    "POLLUTANT_CONCENTRATION",
                    "POLLUTANT_ADDITIONAL_INFO",
                ],
                "universalAqi": True,
                "languageCode": "en",
                "customLocalAqis": [{"regionCode": "US", "aqi": "usa_epa"}],
            },
        )
        if response.status_code >= 400:
            logger.warning(f"[AirQuality] Google Air Quality returned {response.status_code}")
            return None
        result = parse_google_air_quality(response.json())
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"[AirQuality] Google Air Quality request failed: {e}")
        return None

    if result is None:
        logger.warning("[AirQuality] Google returned no usable AQI index")
    return result


async def fetch_openweather_air_quality(
    client: httpx.AsyncClient, cfg: Settings, lat: float, lon: float
) -> Dict[str, Any]:
    if not cfg.openweather_api_key:
        logger.error("[AirQuality] No OpenWeather API key for fallback")
        return error_payload("Air quality service not configured")
    try:
        response = await client.get(
            f"{cfg.openweather_base_url}/2.5/air_pollution",
            params={"lat": lat, "lon": lon, "appid": cfg.openweather_api_key},
        )
        if response.status_code >= 400:
            logger.error(f"[AirQuality] OpenWeather returned {response.status_code}")
            return error_payload("Air quality data unavailable")
        return parse_openweather_air_pollution(response.json())
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"[AirQuality] OpenWeather request failed: {e}")
        return error_payload("Service temporarily unavailable")


async def fetch_air_quality(
    client: httpx.AsyncClient, cfg: Settings, lat: float, lon: float
) -> Dict[str, Any]:
    """Google first, then OpenWeather.

    Never raises for upstream failures: the result's ``source`` is
    ``"error"`` when no source produced an index.
    """
    result = await fetch_google_air_quality(client, cfg, lat, lon)
    if result is not None:
        return result
    return await fetch_openweather_air_quality(client, cfg, lat, lon)
