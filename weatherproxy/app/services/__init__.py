"""Upstream service clients."""

from weatherproxy.app.services.air_quality import fetch_air_quality
from weatherproxy.app.services.metar import fetch_metar, parse_metar
from weatherproxy.app.services.news import fetch_news
from weatherproxy.app.services.onecall import fetch_minutely, fetch_onecall
from weatherproxy.app.services.pollen import fetch_pollen
from weatherproxy.app.services.precipitation import (
    build_precipitation_history,
    build_precipitation_summary,
)

__all__ = [
    "fetch_air_quality",
    "fetch_metar",
    "parse_metar",
    "fetch_news",
    "fetch_minutely",
    "fetch_onecall",
    "fetch_pollen",
    "build_precipitation_history",
    "build_precipitation_summary",
]
