"""Rate limiting for the weather proxy routes.

Route handlers call :meth:`RateLimitGuard.guard` before doing any work. A
throttled caller is an expected outcome, not an error: the guard returns a
ready-made 429 response instead of raising.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from weatherproxy.app.core.config import Settings
from weatherproxy.app.core.logging import get_log_context, get_logger
from weatherproxy.app.middleware.auth import AuthenticatedUser, AuthProvider, get_optional_user

# Re-export models
from weatherproxy.app.middleware.rate_limit.models import (
    RateLimitEntry,
    RateLimitResult,
)

# Re-export backends
from weatherproxy.app.middleware.rate_limit.backends import (
    InMemoryRateLimitStore,
    RateLimitBackend,
)
from weatherproxy.app.middleware.rate_limit.identity import (
    client_ip,
    client_key_for,
    resolve_client_id,
)

logger = get_logger(__name__)

__all__ = [
    # Models
    "RateLimitResult",
    "RateLimitEntry",
    # Backends
    "RateLimitBackend",
    "InMemoryRateLimitStore",
    # Identity
    "client_ip",
    "client_key_for",
    "resolve_client_id",
    # Main classes
    "RateLimitDecision",
    "RateLimitGuard",
    "create_rate_limit_store",
]


@dataclass
class RateLimitDecision:
    """Outcome of :meth:`RateLimitGuard.guard`.

    ``headers`` are always present; ``response`` is set only when the
    request was rejected. ``user`` is the signed-in user the key was derived
    from, so routes that require a session need no second lookup.
    """
    allowed: bool
    client_key: str
    result: RateLimitResult
    headers: Dict[str, str] = field(default_factory=dict)
    response: Optional[JSONResponse] = None
    user: Optional[AuthenticatedUser] = None


def create_rate_limit_store(app_settings: Settings) -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore(
        hourly_limit=app_settings.weather_rate_limit_hourly,
        burst_limit=app_settings.weather_rate_limit_burst,
        burst_window=app_settings.burst_window_seconds,
        sweep_interval=app_settings.rate_limit_sweep_interval_seconds,
    )


class RateLimitGuard:
    """Resolves the caller, consults the store and shapes the outcome.

    Rate limits are applied per authenticated user if available,
    otherwise per client IP.
    """

    def __init__(self, store: RateLimitBackend, auth: Optional[AuthProvider] = None):
        self.store = store
        self.auth = auth

    def rate_limit_headers(self, result: RateLimitResult) -> Dict[str, str]:
        """Informational quota headers, sent on success and rejection alike."""
        return {
            "X-RateLimit-Limit": str(self.store.hourly_limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(math.ceil(result.reset_time)),
            "X-RateLimit-Burst-Limit": str(self.store.burst_limit),
            "X-RateLimit-Burst-Remaining": str(result.burst_remaining),
            "X-RateLimit-Burst-Reset": str(math.ceil(result.burst_reset_time)),
        }

    def retry_after(self, result: RateLimitResult) -> int:
        """Seconds until the window that blocked the request rolls over."""
        now = self.store.now()
        if result.burst_remaining == 0:
            return math.ceil(result.burst_reset_time - now)
        return math.ceil(result.reset_time - now)

    def build_rejection(self, result: RateLimitResult) -> JSONResponse:
        """Create a 429 Too Many Requests response with retry guidance."""
        retry_after = self.retry_after(result)
        headers = self.rate_limit_headers(result)
        headers["Retry-After"] = str(retry_after)
        headers["Cache-Control"] = "no-store"

        return JSONResponse(
            status_code=429,
            content={
                "error": "Too Many Requests",
                "code": "RATE_LIMIT_EXCEEDED",
                "message": f"Rate limit exceeded. Try again in {retry_after} seconds.",
                "retryAfter": retry_after,
                "limit": self.store.hourly_limit,
                "remaining": result.remaining,
                "burstLimit": self.store.burst_limit,
                "burstRemaining": result.burst_remaining,
            },
            headers=headers,
        )

    async def guard(self, request: Request) -> RateLimitDecision:
        """Charge one request to the caller and decide whether it may proceed.

        The quota headers are also kept on ``request.state`` so error
        responses raised later in the route still carry them.
        """
        user = await get_optional_user(request, self.auth)
        key = client_key_for(request, user)
        result = self.store.check(key)
        headers = self.rate_limit_headers(result)
        request.state.client_key = key
        request.state.rate_limit_headers = headers

        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra=get_log_context(
                    request_id=getattr(request.state, "request_id", None),
                    client_key=key,
                    path=request.url.path,
                    burst_blocked=result.burst_blocked,
                ),
            )
            return RateLimitDecision(
                allowed=False,
                client_key=key,
                result=result,
                headers=headers,
                response=self.build_rejection(result),
                user=user,
            )

        return RateLimitDecision(
            allowed=True,
            client_key=key,
            result=result,
            headers=headers,
            user=user,
        )

    async def status(self, request: Request) -> RateLimitDecision:
        """Report the caller's quota without consuming a request."""
        user = await get_optional_user(request, self.auth)
        key = client_key_for(request, user)
        result = self.store.peek(key)
        return RateLimitDecision(
            allowed=result.allowed,
            client_key=key,
            result=result,
            headers=self.rate_limit_headers(result),
            user=user,
        )
