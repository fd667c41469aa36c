import pytest

from weatherproxy.app.core.config import Settings, parse_positive_int


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("45", 45),
        (" 7 ", 7),
        (60, 60),
        ("abc", 120),
        ("0", 120),
        ("-3", 120),
        ("", 120),
        (None, 120),
        (True, 120),
    ],
)
def test_parse_positive_int(raw, expected: int) -> None:
    assert parse_positive_int(raw, 120) == expected


def test_rate_limit_defaults(monkeypatch) -> None:
    for name in (
        "WEATHER_RATE_LIMIT_HOURLY",
        "WEATHER_RATE_LIMIT_BURST",
        "WEATHER_RATE_LIMIT_BURST_WINDOW_MS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)
    assert settings.weather_rate_limit_hourly == 120
    assert settings.weather_rate_limit_burst == 30
    assert settings.weather_rate_limit_burst_window_ms == 300_000
    assert settings.burst_window_seconds == 300


def test_rate_limit_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("WEATHER_RATE_LIMIT_HOURLY", "500")
    monkeypatch.setenv("WEATHER_RATE_LIMIT_BURST", "50")
    monkeypatch.setenv("WEATHER_RATE_LIMIT_BURST_WINDOW_MS", "60000")

    settings = Settings(_env_file=None)
    assert settings.weather_rate_limit_hourly == 500
    assert settings.weather_rate_limit_burst == 50
    assert settings.burst_window_seconds == 60


@pytest.mark.parametrize("raw", ["abc", "0", "-10", "1.5x"])
def test_invalid_rate_limit_env_falls_back(monkeypatch, raw: str) -> None:
    """Bad tuning values never fail startup."""
    monkeypatch.setenv("WEATHER_RATE_LIMIT_HOURLY", raw)
    monkeypatch.setenv("WEATHER_RATE_LIMIT_BURST", raw)
    monkeypatch.setenv("WEATHER_RATE_LIMIT_BURST_WINDOW_MS", raw)

    settings = Settings(_env_file=None)
    assert settings.weather_rate_limit_hourly == 120
    assert settings.weather_rate_limit_burst == 30
    assert settings.weather_rate_limit_burst_window_ms == 300_000


def test_news_api_key_public_alias(monkeypatch) -> None:
    monkeypatch.delenv("NEWS_API_KEY", raising=False)
    monkeypatch.setenv("NEXT_PUBLIC_NEWS_API_KEY", "public-key")

    settings = Settings(_env_file=None)
    assert settings.news_api_key == "public-key"


def test_supabase_configured(monkeypatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    assert Settings(_env_file=None).supabase_configured is False

    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
    assert Settings(_env_file=None).supabase_configured is True


def test_timeout_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, upstream_timeout=0)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("https://weather.example.com, http://localhost:3000", ["https://weather.example.com", "http://localhost:3000"]),
        ('["http://localhost:3000"]', ["http://localhost:3000"]),
        ("*", ["*"]),
        ("[]", []),
    ],
)
def test_cors_origins_parsing_variants(monkeypatch, raw: str, expected: list[str]) -> None:
    monkeypatch.setenv("CORS_ORIGINS", raw)

    settings = Settings(_env_file=None)
    assert settings.cors_origins == expected
