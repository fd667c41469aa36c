"""Client identifier resolution for rate limiting.

Priority: authenticated user id > first x-forwarded-for hop > x-real-ip >
the literal ``anonymous``. Resolution never raises.
"""

from typing import Optional

from fastapi import Request

from weatherproxy.app.middleware.auth import AuthenticatedUser, AuthProvider, get_optional_user

ANONYMOUS = "anonymous"


def client_ip(request: Request) -> str:
    """Proxy-aware client IP taken from the request headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return ANONYMOUS


def client_key_for(request: Request, user: Optional[AuthenticatedUser]) -> str:
    """``user:<id>`` for a signed-in user, otherwise ``ip:<address>``."""
    if user is not None and user.id:
        return f"user:{user.id}"
    return f"ip:{client_ip(request)}"


async def resolve_client_id(request: Request, auth: Optional[AuthProvider] = None) -> str:
    """Derive the stable rate limit key for a request.

    Returns ``user:<id>`` when a signed-in user is resolved, otherwise
    ``ip:<address>`` (``ip:anonymous`` when no address is available).
    """
    user = await get_optional_user(request, auth)
    return client_key_for(request, user)
