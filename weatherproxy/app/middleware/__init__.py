"""Middleware package for the weather proxy."""

from weatherproxy.app.middleware.auth import (
    AuthenticatedUser,
    AuthProvider,
    NullAuthProvider,
    SupabaseAuthProvider,
)
from weatherproxy.app.middleware.rate_limit import (
    InMemoryRateLimitStore,
    RateLimitDecision,
    RateLimitGuard,
    resolve_client_id,
)
from weatherproxy.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "AuthenticatedUser",
    "AuthProvider",
    "NullAuthProvider",
    "SupabaseAuthProvider",
    "InMemoryRateLimitStore",
    "RateLimitDecision",
    "RateLimitGuard",
    "resolve_client_id",
    "RequestIdMiddleware",
    "get_request_id",
]
