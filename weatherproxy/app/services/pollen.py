"""Pollen levels from the Google Pollen API with an air quality fallback."""

from typing import Any, Dict, List, Optional

import httpx

from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.logging import get_logger

logger = get_logger(__name__)

TREE_PLANTS = ["MAPLE", "ELM", "COTTONWOOD", "ALDER", "BIRCH", "ASH", "PINE", "OAK", "JUNIPER"]
GRASS_PLANTS = ["GRAMINALES"]
WEED_PLANTS = ["RAGWEED", "WEED"]

UNAVAILABLE = {
    "tree": {"Tree": "No Data"},
    "grass": {"Grass": "No Data"},
    "weed": {"Weed": "No Data"},
    "source": "unavailable",
}


def pollen_category(value: float) -> str:
    if value == 0:
        return "No Data"
    if value <= 2:
        return "Low"
    if value <= 5:
        return "Moderate"
    if value <= 8:
        return "High"
    return "Very High"


def _category(index_info: Optional[Dict[str, Any]]) -> str:
    index_info = index_info or {}
    return index_info.get("category") or pollen_category(index_info.get("value") or 0)


def _plant_breakdown(plants: List[Dict[str, Any]], group: List[str]) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for plant in plants:
        code = plant.get("code") or plant.get("displayName") or ""
        if any(kind in code for kind in group):
            result[plant.get("displayName") or code] = _category(plant.get("indexInfo"))
    return result


def parse_google_pollen(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Group Google's per-plant indices into tree, grass and weed breakdowns.

    Falls back to the per-type index when no plant of a group is reported.
    """
    daily = (data.get("dailyInfo") or [None])[0]
    if not daily:
        return None

    plants = daily.get("plantInfo") or []
    breakdowns = {
        "tree": _plant_breakdown(plants, TREE_PLANTS),
        "grass": _plant_breakdown(plants, GRASS_PLANTS),
        "weed": _plant_breakdown(plants, WEED_PLANTS),
    }

    types = {t.get("code"): t for t in daily.get("pollenTypeInfo") or []}
    for group, code, label in (
        ("tree", "TREE", "Tree"),
        ("grass", "GRASS", "Grass"),
        ("weed", "WEED", "Weed"),
    ):
        if not breakdowns[group] and code in types:
            breakdowns[group][label] = _category(types[code].get("indexInfo"))

    return {**breakdowns, "source": "google"}


async def fetch_google_pollen(
    client: httpx.AsyncClient, cfg: Settings, lat: float, lon: float
) -> Optional[Dict[str, Any]]:
    if not cfg.google_pollen_api_key:
        return None
    try:
        response = await client.get(
            cfg.google_pollen_url,
            params={
                "key": cfg.google_pollen_api_key,
                "location.latitude": lat,
                "location.longitude": lon,
                "days": 1,
            },
        )
        if response.status_code >= 400:
            logger.warning(f"[Pollen] Google Pollen returned {response.status_code}")
            return None
        return parse_google_pollen(response.json())
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"[Pollen] Google Pollen request failed: {e}")
        return None


async def fetch_air_quality_fallback(
    client: httpx.AsyncClient, cfg: Settings, lat: float, lon: float
) -> Optional[Dict[str, Any]]:
    """Approximate pollen categories from the OpenWeather air quality index."""
    try:
        response = await client.get(
            f"{cfg.openweather_base_url}/2.5/air_pollution",
            params={"lat": lat, "lon": lon, "appid": cfg.openweather_api_key},
        )
        if response.status_code >= 400:
            logger.warning(f"[Pollen] Air pollution fallback returned {response.status_code}")
            return None
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"[Pollen] Air pollution fallback failed: {e}")
        return None

    readings = data.get("list") or [{}]
    aqi = (readings[0].get("main") or {}).get("aqi") or 1
    return {
        "tree": {"Tree": pollen_category(min(round(aqi * 10), 100))},
        "grass": {"Grass": pollen_category(min(round(aqi * 8), 100))},
        "weed": {"Weed": pollen_category(min(round(aqi * 6), 100))},
        "source": "openweather_fallback",
    }


async def fetch_pollen(
    client: httpx.AsyncClient, cfg: Settings, lat: float, lon: float
) -> Optional[Dict[str, Any]]:
    """Google first, then the air quality approximation; None if both fail."""
    result = await fetch_google_pollen(client, cfg, lat, lon)
    if result is not None:
        return result
    return await fetch_air_quality_fallback(client, cfg, lat, lon)
