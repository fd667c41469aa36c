"""METAR observations from the NOAA Aviation Weather Center.

Raw METAR text is parsed into a structured observation, including the
flight category derived from ceiling and visibility.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.logging import get_logger
from weatherproxy.app.exceptions import UpstreamError

logger = get_logger(__name__)

ICAO_PATTERN = re.compile(r"^[A-Z]{4}$")

_ICAO_RE = re.compile(r"\b([A-Z]{4})\b")
_TIME_RE = re.compile(r"\b(\d{6})Z\b")
_WIND_RE = re.compile(r"\b(\d{3}|VRB)(\d{2,3})(?:G(\d{2,3}))?KT\b")
_VIS_RE = re.compile(r"\b([PM])?(\d+)?\s*(\d+/\d+)?\s*SM\b")
_TEMP_RE = re.compile(r"\b(M?\d{2})/(M?\d{2})\b")
_ALT_RE = re.compile(r"\bA(\d{4})\b")
_CLOUD_RE = re.compile(r"\b(FEW|SCT|BKN|OVC|CLR|SKC)(\d{3})?\b")

WEATHER_CODES = [
    "RA", "SN", "DZ", "SH", "TS", "FG", "BR", "HZ", "FU", "DU", "SA",
    "GR", "GS", "IC", "PL", "SG", "UP", "FC", "SS", "DS", "SQ", "PO",
]
DESCRIPTORS = ["MI", "PR", "BC", "DR", "BL", "SH", "TS", "FZ", "VC"]

# [intensity][descriptor][phenomenon...], e.g. -RA, +TSRA, FZRA, VCSH
_WEATHER_RE = re.compile(
    rf"^(?:\+|-)?(?:{'|'.join(DESCRIPTORS)})?(?:{'|'.join(WEATHER_CODES)})+$"
)


def _observation_time(ddhhmm: str, now: datetime) -> Optional[datetime]:
    day, hour, minute = int(ddhhmm[:2]), int(ddhhmm[2:4]), int(ddhhmm[4:6])
    year, month = now.year, now.month
    try:
        observed = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    except ValueError:
        observed = None

    # A day in the future means the report is from the previous month
    if observed is None or observed > now:
        month -= 1
        if month < 1:
            month = 12
            year -= 1
        try:
            observed = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
        except ValueError:
            return None
    return observed


def determine_flight_category(
    visibility: Optional[float], clouds: List[Dict[str, Any]]
) -> str:
    """Classify conditions as LIFR, IFR, MVFR, VFR or UNKNOWN.

    The ceiling is the lowest broken or overcast layer.
    """
    ceiling: Optional[int] = None
    for cloud in clouds:
        base = cloud.get("base")
        if cloud.get("cover") in ("BKN", "OVC") and base is not None:
            if ceiling is None or base < ceiling:
                ceiling = base

    if (ceiling is not None and ceiling < 500) or (visibility is not None and visibility < 1):
        return "LIFR"
    if (ceiling is not None and ceiling < 1000) or (visibility is not None and visibility < 3):
        return "IFR"
    if (ceiling is not None and ceiling < 3000) or (visibility is not None and visibility < 5):
        return "MVFR"
    if visibility is None and ceiling is None:
        return "UNKNOWN"
    return "VFR"


def parse_metar(raw: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Parse raw METAR text into observation fields.

    Fields that cannot be found in the report are omitted.
    """
    now = now or datetime.now(timezone.utc)
    result: Dict[str, Any] = {"raw": raw, "clouds": []}

    icao = _ICAO_RE.search(raw)
    if icao:
        result["icao"] = icao.group(1)

    time_match = _TIME_RE.search(raw)
    if time_match:
        observed = _observation_time(time_match.group(1), now)
        if observed is not None:
            result["observationTime"] = observed.isoformat().replace("+00:00", "Z")

    wind = _WIND_RE.search(raw)
    if wind:
        if wind.group(1) != "VRB":
            result["windDirection"] = int(wind.group(1))
        result["windSpeed"] = int(wind.group(2))
        if wind.group(3):
            result["windGust"] = int(wind.group(3))

    vis = _VIS_RE.search(raw)
    if vis:
        prefix, whole, fraction = vis.group(1), vis.group(2), vis.group(3)
        visibility = float(int(whole)) if whole else 0.0
        if fraction:
            num, denom = (int(p) for p in fraction.split("/"))
            if denom:
                visibility += num / denom
        if prefix == "P":
            # P6SM means greater than 6 statute miles
            result["visibility"] = visibility or 6.0
        elif prefix == "M":
            result["visibility"] = max(0.0, visibility - 0.01)
        else:
            result["visibility"] = visibility

    temp = _TEMP_RE.search(raw)
    if temp:
        result["temperature"] = int(temp.group(1).replace("M", "-"))
        result["dewpoint"] = int(temp.group(2).replace("M", "-"))

    alt = _ALT_RE.search(raw)
    if alt:
        result["altimeter"] = int(alt.group(1)) / 100

    for cover, base in _CLOUD_RE.findall(raw):
        layer: Dict[str, Any] = {"cover": cover}
        if base:
            layer["base"] = int(base) * 100
        result["clouds"].append(layer)

    result["flightCategory"] = determine_flight_category(
        result.get("visibility"), result["clouds"]
    )

    weather = [
        part for part in raw.split(" ")
        if not ICAO_PATTERN.match(part) and _WEATHER_RE.match(part)
    ]
    if weather:
        result["weather"] = weather

    return result


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def build_metar_response(station: str, raw: str) -> Dict[str, Any]:
    parsed = parse_metar(raw)
    observation = {
        "raw": raw,
        "icao": parsed.get("icao") or station,
        "observationTime": parsed.get("observationTime") or _timestamp(),
        "flightCategory": parsed.get("flightCategory", "UNKNOWN"),
        "clouds": parsed.get("clouds", []),
    }
    for field in (
        "temperature", "dewpoint", "windDirection", "windSpeed", "windGust",
        "visibility", "altimeter", "weather",
    ):
        if field in parsed:
            observation[field] = parsed[field]

    return {"station": station, "observation": observation, "timestamp": _timestamp()}


async def fetch_metar(client: httpx.AsyncClient, cfg: Settings, station: str) -> Dict[str, Any]:
    """Fetch and parse the latest METAR for an ICAO station.

    Raises:
        UpstreamError: 502 when the upstream fails, 404 when it has no report.
    """
    try:
        response = await client.get(
            cfg.aviation_weather_url,
            params={"ids": station, "format": "raw", "taf": "false"},
            headers={"Accept": "text/plain"},
        )
    except httpx.HTTPError as e:
        logger.error(f"[METAR] Request for {station} failed: {e}")
        raise UpstreamError("aviationweather", "Unable to fetch METAR data") from e

    if response.status_code >= 400:
        logger.error(f"[METAR] AWC returned {response.status_code} for {station}")
        raise UpstreamError(
            "aviationweather",
            "Unable to fetch METAR data",
            upstream_status=response.status_code,
        )

    raw = response.text.strip()
    if not raw:
        raise UpstreamError(
            "aviationweather",
            "No METAR data available for this station",
            status_code=404,
        )

    # The feed may return several reports; the first line is the latest
    return build_metar_response(station, raw.splitlines()[0].strip())
