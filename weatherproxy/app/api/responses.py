"""Response helpers shared by the proxy routes."""

from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

from weatherproxy.app.middleware.rate_limit import RateLimitDecision

CACHE_HIT = "HIT"
CACHE_MISS = "MISS"


def proxy_response(
    payload: Any,
    decision: RateLimitDecision,
    cache_status: Optional[str] = None,
    cache_control: Optional[str] = None,
    status_code: int = 200,
) -> JSONResponse:
    """JSON response carrying the rate limit headers and cache markers."""
    headers: Dict[str, str] = dict(decision.headers)
    if cache_status is not None:
        headers["X-Cache"] = cache_status
    if cache_control is not None:
        headers["Cache-Control"] = cache_control
    return JSONResponse(content=payload, status_code=status_code, headers=headers)
