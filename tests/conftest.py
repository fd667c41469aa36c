"""Shared fixtures for the weather proxy tests."""

from typing import Dict, Optional

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from weatherproxy.app.core.cache import CacheRegistry
from weatherproxy.app.core.config import Settings
from weatherproxy.app.main import create_app
from weatherproxy.app.middleware.auth import AuthenticatedUser, AuthProvider, extract_bearer_token
from weatherproxy.app.middleware.rate_limit import InMemoryRateLimitStore

START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticAuthProvider(AuthProvider):
    """Maps bearer tokens to users without any network call."""

    def __init__(self, users: Optional[Dict[str, str]] = None):
        self.users = users or {}

    async def get_authenticated_user(self, request: Request) -> Optional[AuthenticatedUser]:
        token = extract_bearer_token(request)
        if token is None or token not in self.users:
            return None
        return AuthenticatedUser(id=self.users[token])


class FailingAuthProvider(AuthProvider):
    async def get_authenticated_user(self, request: Request) -> Optional[AuthenticatedUser]:
        raise RuntimeError("session store unavailable")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        openweather_api_key="test-ow-key",
        google_pollen_api_key="test-pollen-key",
        news_api_key="test-news-key",
        google_air_quality_api_key="test-aq-key",
        weather_rate_limit_hourly=120,
        weather_rate_limit_burst=30,
        weather_rate_limit_burst_window_ms=300_000,
    )


@pytest.fixture
def store(clock) -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore(hourly_limit=120, burst_limit=30, clock=clock)


@pytest.fixture
def auth_provider() -> StaticAuthProvider:
    return StaticAuthProvider({"good-token": "user-123"})


@pytest.fixture
def app(test_settings, store, clock, auth_provider):
    return create_app(
        test_settings,
        auth_provider=auth_provider,
        rate_limit_store=store,
        caches=CacheRegistry(clock=clock),
    )


@pytest.fixture
def client(app):
    # Entering the context runs the lifespan (shared HTTP client, sweeper)
    with TestClient(app) as test_client:
        yield test_client


class CountingAuthProvider(StaticAuthProvider):
    """Static provider that records how many lookups were made."""

    def __init__(self, users: Optional[Dict[str, str]] = None):
        super().__init__(users)
        self.calls = 0

    async def get_authenticated_user(self, request: Request) -> Optional[AuthenticatedUser]:
        self.calls += 1
        return await super().get_authenticated_user(request)
