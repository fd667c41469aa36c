"""Rate limit status route."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from weatherproxy.app.api.deps import get_rate_limit_guard
from weatherproxy.app.middleware.rate_limit import RateLimitGuard

router = APIRouter(prefix="/api", tags=["rate-limit"])


@router.get("/rate-limit/status")
async def rate_limit_status(
    request: Request,
    guard: RateLimitGuard = Depends(get_rate_limit_guard),
) -> JSONResponse:
    """Report the caller's remaining quota without consuming any."""
    decision = await guard.status(request)
    result = decision.result
    return JSONResponse(
        content={
            "clientKey": decision.client_key,
            "allowed": result.allowed,
            "limit": guard.store.hourly_limit,
            "remaining": result.remaining,
            "resetTime": result.reset_time,
            "burstLimit": guard.store.burst_limit,
            "burstRemaining": result.burst_remaining,
            "burstResetTime": result.burst_reset_time,
        },
        headers={**decision.headers, "Cache-Control": "no-store"},
    )
