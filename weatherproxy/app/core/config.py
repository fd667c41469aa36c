import re
from typing import Annotated, Any

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_HOURLY_LIMIT = 120
DEFAULT_BURST_LIMIT = 30
DEFAULT_BURST_WINDOW_MS = 300_000
DEFAULT_SWEEP_INTERVAL_SECONDS = 300


def parse_positive_int(value: Any, default: int) -> int:
    """Parse a positive integer, returning ``default`` for anything else.

    Used for rate limiter tuning values read from the environment: a
    missing, non-numeric, zero or negative value never fails startup.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        return [str(v).strip() for v in raw if str(v).strip()]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    parts = [p.strip("[]\"' ") for p in re.split(r"[,\s]+", raw)]
    origins = [p for p in parts if p]
    if "*" in origins:
        return ["*"]
    return list(dict.fromkeys(origins))


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Rate limiting (invalid values fall back to the defaults)
    weather_rate_limit_hourly: int = DEFAULT_HOURLY_LIMIT
    weather_rate_limit_burst: int = DEFAULT_BURST_LIMIT
    weather_rate_limit_burst_window_ms: int = DEFAULT_BURST_WINDOW_MS
    rate_limit_sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS

    # Upstream API credentials
    openweather_api_key: str = ""
    google_pollen_api_key: str = ""
    google_air_quality_api_key: str = ""
    news_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("NEWS_API_KEY", "NEXT_PUBLIC_NEWS_API_KEY"),
    )

    # Supabase session lookup (optional)
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Upstream base URLs
    openweather_base_url: str = "https://api.openweathermap.org/data"
    aviation_weather_url: str = "https://aviationweather.gov/api/data/metar"
    google_pollen_url: str = "https://pollen.googleapis.com/v1/forecast:lookup"
    google_air_quality_url: str = "https://airquality.googleapis.com/v1/currentConditions:lookup"
    news_api_url: str = "https://newsapi.org/v2"
    upstream_user_agent: str = "16-Bit-Weather/1.0"

    # Response cache TTLs in seconds
    cache_ttl_weather: int = 60
    cache_ttl_metar: int = 600
    cache_ttl_precipitation: int = 900
    cache_ttl_precipitation_history: int = 3600
    cache_ttl_pollen: int = 1800
    cache_ttl_air_quality: int = 600
    cache_ttl_news: int = 900

    # HTTP client settings
    upstream_timeout: float = 8.0  # Abort slow upstream fetches
    httpx_connect_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator(
        "weather_rate_limit_hourly",
        "weather_rate_limit_burst",
        "weather_rate_limit_burst_window_ms",
        "rate_limit_sweep_interval_seconds",
        mode="before",
    )
    @classmethod
    def fallback_to_default(cls, v: Any, info: ValidationInfo) -> int:
        """Replace invalid rate limit tuning values with their defaults."""
        default = cls.model_fields[info.field_name].default
        return parse_positive_int(v, default)

    @field_validator("upstream_timeout", "httpx_connect_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @property
    def burst_window_seconds(self) -> float:
        return self.weather_rate_limit_burst_window_ms / 1000

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )


# Global settings instance
settings = Settings()
