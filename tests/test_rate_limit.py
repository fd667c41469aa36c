"""Tests for the dual-window rate limiter, guard and client identity."""

import asyncio
import json
import math
import threading

import httpx
import pytest
import respx
from starlette.requests import Request

from tests.conftest import START_TIME, FailingAuthProvider, FakeClock, StaticAuthProvider
from weatherproxy.app.middleware.auth import NullAuthProvider, SupabaseAuthProvider
from weatherproxy.app.middleware.rate_limit import (
    InMemoryRateLimitStore,
    RateLimitGuard,
    RateLimitResult,
    client_ip,
    resolve_client_id,
)


def make_request(headers=None, path="/api/weather/onecall") -> Request:
    raw_headers = [
        (name.lower().encode(), value.encode()) for name, value in (headers or {}).items()
    ]
    return Request({
        "type": "http",
        "method": "GET",
        "path": path,
        "query_string": b"",
        "headers": raw_headers,
    })


def exhaust_burst(store, key="ip:1.2.3.4", n=30):
    results = [store.check(key) for _ in range(n)]
    assert all(r.allowed for r in results)
    return results


class TestInMemoryRateLimitStore:
    """Tests for the dual-window store."""

    def test_first_call_opens_both_windows(self, store):
        """A new key is admitted with both quotas reduced by one."""
        result = store.check("ip:1.2.3.4")

        assert result.allowed is True
        assert result.remaining == 119
        assert result.burst_remaining == 29
        assert result.reset_time == START_TIME + 3600
        assert result.burst_reset_time == START_TIME + 300

    def test_burst_exhaustion_blocks_request(self, store):
        """The 31st request inside the burst window is rejected."""
        results = exhaust_burst(store)
        assert results[-1].burst_remaining == 0
        assert results[-1].remaining == 90

        result = store.check("ip:1.2.3.4")
        assert result.allowed is False
        assert result.burst_remaining == 0
        assert result.remaining == 90
        assert result.burst_blocked is True

    def test_rejection_does_not_consume_quota(self, store, clock):
        """Repeated rejections return identical results and never increment."""
        exhaust_burst(store)

        first = store.check("ip:1.2.3.4")
        second = store.check("ip:1.2.3.4")
        assert first == second

        clock.advance(301)
        result = store.check("ip:1.2.3.4")
        assert result.allowed is True
        assert result.remaining == 89
        assert result.burst_remaining == 29

    def test_burst_window_rollover(self, store, clock):
        """A fresh burst window starts from the request that opens it."""
        exhaust_burst(store)
        clock.advance(301)

        result = store.check("ip:1.2.3.4")
        assert result.burst_reset_time == clock.now + 300
        assert result.reset_time == START_TIME + 3600

    def test_hourly_scenario_across_burst_windows(self, store, clock):
        """120 requests spread over four burst windows, then the hourly cap."""
        for window in range(4):
            exhaust_burst(store)
            clock.advance(301)

        # t = 1204s: burst window has reset but the hour is used up
        result = store.check("ip:1.2.3.4")
        assert result.allowed is False
        assert result.remaining == 0
        assert result.burst_remaining == 30
        assert result.burst_blocked is False

        clock.now = START_TIME + 3601
        result = store.check("ip:1.2.3.4")
        assert result.allowed is True
        assert result.remaining == 119
        assert result.burst_remaining == 29

    def test_keys_are_independent(self, store):
        """Exhausting one key does not affect another."""
        exhaust_burst(store, key="ip:1.1.1.1")
        assert store.check("ip:1.1.1.1").allowed is False

        result = store.check("ip:2.2.2.2")
        assert result.allowed is True
        assert result.remaining == 119

    def test_peek_does_not_consume(self, store):
        """peek reports status without touching the counters."""
        fresh = store.peek("ip:1.2.3.4")
        assert fresh.allowed is True
        assert fresh.remaining == 120
        assert "ip:1.2.3.4" not in store

        store.check("ip:1.2.3.4")
        for _ in range(5):
            status = store.peek("ip:1.2.3.4")
        assert status.remaining == 119
        assert status.burst_remaining == 29

    def test_peek_after_burst_window_elapsed(self, store, clock):
        exhaust_burst(store)
        clock.advance(301)

        status = store.peek("ip:1.2.3.4")
        assert status.allowed is True
        assert status.burst_remaining == 30
        assert status.remaining == 90

    def test_sweep_removes_expired_entries(self, store, clock):
        """Entries past their hourly reset are deleted by sweep."""
        store.check("ip:old")
        clock.advance(1800)
        store.check("ip:new")
        clock.advance(1801)

        assert store.sweep() == 1
        assert "ip:old" not in store
        assert "ip:new" in store

    def test_clear(self, store):
        store.check("ip:1.2.3.4")
        store.clear()
        assert len(store) == 0

    def test_concurrent_checks_never_overadmit(self, store):
        """Concurrent checks on one key admit exactly the burst allowance."""
        threads_count = 64
        barrier = threading.Barrier(threads_count)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            result = store.check("ip:9.9.9.9")
            with results_lock:
                results.append(result.allowed)

        threads = [threading.Thread(target=worker) for _ in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == threads_count
        assert sum(results) == 30
        assert store.peek("ip:9.9.9.9").remaining == 90

    def test_invalid_limits_fall_back_to_defaults(self):
        """Zero or negative tuning values use the defaults."""
        store = InMemoryRateLimitStore(hourly_limit=0, burst_limit=-5, burst_window=0)
        assert store.hourly_limit == 120
        assert store.burst_limit == 30
        assert store.burst_window == 300

    @pytest.mark.asyncio
    async def test_background_sweeper(self):
        """The sweeper task periodically evicts expired entries."""
        clock = FakeClock()
        store = InMemoryRateLimitStore(sweep_interval=0.01, clock=clock)
        store.check("ip:1.2.3.4")
        clock.advance(3601)

        await store.start()
        assert store.running is True
        await asyncio.sleep(0.1)
        await store.stop()

        assert store.running is False
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self):
        store = InMemoryRateLimitStore()
        await store.stop()
        assert store.running is False


class TestRateLimitGuard:
    """Tests for the request guard and the 429 response."""

    @pytest.fixture
    def guard(self, store):
        return RateLimitGuard(store, NullAuthProvider())

    def test_headers(self, guard, store):
        """Informational headers mirror the result and configured limits."""
        result = store.check("ip:1.2.3.4")
        headers = guard.rate_limit_headers(result)

        assert headers == {
            "X-RateLimit-Limit": "120",
            "X-RateLimit-Remaining": "119",
            "X-RateLimit-Reset": str(math.ceil(START_TIME + 3600)),
            "X-RateLimit-Burst-Limit": "30",
            "X-RateLimit-Burst-Remaining": "29",
            "X-RateLimit-Burst-Reset": str(math.ceil(START_TIME + 300)),
        }

    def test_retry_after_uses_burst_window_when_burst_blocked(self, guard, store, clock):
        exhaust_burst(store)
        clock.advance(100)
        result = store.check("ip:1.2.3.4")
        assert guard.retry_after(result) == 200

    def test_retry_after_uses_hourly_window_when_hour_exhausted(self, guard, store, clock):
        for _ in range(4):
            exhaust_burst(store)
            clock.advance(301)
        result = store.check("ip:1.2.3.4")
        assert guard.retry_after(result) == 3600 - 1204

    @pytest.mark.asyncio
    async def test_guard_allows_and_sets_client_key(self, guard):
        request = make_request({"x-forwarded-for": "203.0.113.5"})
        decision = await guard.guard(request)

        assert decision.allowed is True
        assert decision.response is None
        assert decision.client_key == "ip:203.0.113.5"
        assert request.state.client_key == "ip:203.0.113.5"
        assert decision.headers["X-RateLimit-Remaining"] == "119"

    @pytest.mark.asyncio
    async def test_guard_rejection_response(self, guard):
        """The 31st request gets a complete 429 response."""
        request = make_request({"x-forwarded-for": "203.0.113.5"})
        for _ in range(30):
            await guard.guard(request)

        decision = await guard.guard(request)
        assert decision.allowed is False

        response = decision.response
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "300"
        assert response.headers["Cache-Control"] == "no-store"
        assert response.headers["X-RateLimit-Burst-Remaining"] == "0"

        body = json.loads(response.body)
        assert body == {
            "error": "Too Many Requests",
            "code": "RATE_LIMIT_EXCEEDED",
            "message": "Rate limit exceeded. Try again in 300 seconds.",
            "retryAfter": 300,
            "limit": 120,
            "remaining": 90,
            "burstLimit": 30,
            "burstRemaining": 0,
        }

    @pytest.mark.asyncio
    async def test_status_does_not_consume(self, guard, store):
        request = make_request({"x-real-ip": "198.51.100.7"})
        decision = await guard.status(request)

        assert decision.client_key == "ip:198.51.100.7"
        assert decision.result == RateLimitResult(
            allowed=True,
            remaining=120,
            reset_time=START_TIME + 3600,
            burst_remaining=30,
            burst_reset_time=START_TIME + 300,
        )
        assert len(store) == 0


class TestClientIdentity:
    """Tests for client identifier resolution."""

    @pytest.mark.asyncio
    async def test_authenticated_user(self):
        request = make_request({
            "authorization": "Bearer good-token",
            "x-forwarded-for": "203.0.113.5",
        })
        auth = StaticAuthProvider({"good-token": "user-123"})
        assert await resolve_client_id(request, auth) == "user:user-123"

    @pytest.mark.asyncio
    async def test_first_forwarded_hop(self):
        request = make_request({"x-forwarded-for": " 203.0.113.5 , 10.0.0.1"})
        assert await resolve_client_id(request, NullAuthProvider()) == "ip:203.0.113.5"

    @pytest.mark.asyncio
    async def test_real_ip_fallback(self):
        request = make_request({"x-real-ip": "198.51.100.7"})
        assert await resolve_client_id(request) == "ip:198.51.100.7"

    @pytest.mark.asyncio
    async def test_anonymous(self):
        assert await resolve_client_id(make_request()) == "ip:anonymous"

    @pytest.mark.asyncio
    async def test_auth_failure_falls_back_to_ip(self):
        """A failing session lookup never fails resolution."""
        request = make_request({
            "authorization": "Bearer whatever",
            "x-forwarded-for": "203.0.113.5",
        })
        assert await resolve_client_id(request, FailingAuthProvider()) == "ip:203.0.113.5"

    def test_empty_forwarded_header_uses_real_ip(self):
        request = make_request({"x-forwarded-for": " ", "x-real-ip": "198.51.100.7"})
        assert client_ip(request) == "198.51.100.7"


class TestSupabaseAuthProvider:
    """Tests for the Supabase session lookup."""

    @pytest.mark.asyncio
    async def test_resolves_user(self, respx_mock):
        route = respx_mock.get("https://project.supabase.co/auth/v1/user").mock(
            return_value=httpx.Response(200, json={"id": "abc", "email": "a@example.com"})
        )
        async with httpx.AsyncClient() as http_client:
            provider = SupabaseAuthProvider("https://project.supabase.co/", "anon", http_client)
            user = await provider.get_authenticated_user(
                make_request({"authorization": "Bearer token-1"})
            )

        assert user.id == "abc"
        assert user.email == "a@example.com"
        sent = route.calls.last.request
        assert sent.headers["apikey"] == "anon"
        assert sent.headers["authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_rejected_token(self, respx_mock):
        respx_mock.get("https://project.supabase.co/auth/v1/user").mock(
            return_value=httpx.Response(401, json={"message": "invalid JWT"})
        )
        async with httpx.AsyncClient() as http_client:
            provider = SupabaseAuthProvider("https://project.supabase.co", "anon", http_client)
            user = await provider.get_authenticated_user(
                make_request({"authorization": "Bearer expired"})
            )
        assert user is None

    @pytest.mark.asyncio
    async def test_no_token_skips_lookup(self):
        with respx.mock(assert_all_called=False) as router:
            route = router.get("https://project.supabase.co/auth/v1/user")
            async with httpx.AsyncClient() as http_client:
                provider = SupabaseAuthProvider("https://project.supabase.co", "anon", http_client)
                assert await provider.get_authenticated_user(make_request()) is None
            assert route.called is False


class TestRateLimitRoutes:
    """Rate limiting as seen through the HTTP routes."""

    def test_guard_runs_before_validation(self, client):
        """Invalid requests still count; the 31st is throttled before validation."""
        for _ in range(30):
            response = client.get("/api/aviation/metar", params={"station": "bad"})
            assert response.status_code == 400

        response = client.get("/api/aviation/metar", params={"station": "bad"})
        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
        assert response.headers["Retry-After"] == "300"

    def test_status_endpoint(self, client):
        client.get("/api/aviation/metar", params={"station": "bad"})

        response = client.get("/api/rate-limit/status")
        assert response.status_code == 200
        body = response.json()
        assert body["clientKey"] == "ip:anonymous"
        assert body["remaining"] == 119
        assert body["burstRemaining"] == 29
        assert response.headers["X-RateLimit-Remaining"] == "119"

        # Checking status twice does not consume quota
        assert client.get("/api/rate-limit/status").json()["remaining"] == 119

    def test_authenticated_callers_get_own_quota(self, client):
        for _ in range(30):
            client.get("/api/aviation/metar", params={"station": "bad"})
        assert client.get("/api/aviation/metar").status_code == 429

        response = client.get(
            "/api/aviation/metar",
            headers={"Authorization": "Bearer good-token"},
        )
        assert response.status_code == 400

        status = client.get(
            "/api/rate-limit/status",
            headers={"Authorization": "Bearer good-token"},
        ).json()
        assert status["clientKey"] == "user:user-123"
        assert status["remaining"] == 119

    def test_error_responses_keep_quota_headers(self, client):
        response = client.get("/api/weather/precipitation")
        assert response.status_code == 400
        assert response.headers["X-RateLimit-Limit"] == "120"
        assert response.headers["X-RateLimit-Remaining"] == "119"
        assert response.headers["X-RateLimit-Burst-Remaining"] == "29"

        response = client.get(
            "/api/weather/precipitation-history", params={"lat": "1", "lon": "2"}
        )
        assert response.status_code == 401
        assert response.headers["X-RateLimit-Remaining"] == "118"

    def test_unguarded_errors_have_no_quota_headers(self, client):
        response = client.get("/api/does-not-exist")
        assert response.status_code == 404
        assert "X-RateLimit-Remaining" not in response.headers
