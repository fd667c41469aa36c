"""Custom exceptions for the weather proxy.

Throttling and cache misses are normal outcomes and are never raised;
these exceptions cover request validation and upstream failures only.
"""


class ProxyException(Exception):
    """Base class for proxy exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Proxy error"):
        self.message = message
        super().__init__(message)


class InvalidParameterError(ProxyException):
    """Raised when query parameters are missing or malformed.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400


class AuthenticationError(ProxyException):
    """Raised when a route requires a signed-in user and none was resolved.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class UpstreamNotConfiguredError(ProxyException):
    """Raised when the API key for an upstream is not configured.

    Maps to HTTP 500 Internal Server Error.
    """
    status_code = 500

    def __init__(self, upstream: str):
        self.upstream = upstream
        super().__init__(f"{upstream} API key not configured")


class UpstreamError(ProxyException):
    """Raised when an upstream API call fails or returns a non-2xx status.

    Maps to HTTP 502 Bad Gateway unless a more specific status is given.
    """
    status_code = 502

    def __init__(
        self,
        upstream: str,
        message: str = "Upstream request failed",
        status_code: int | None = None,
        upstream_status: int | None = None,
        detail: str | None = None,
    ):
        self.upstream = upstream
        self.upstream_status = upstream_status
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)
