"""Weather proxy service with per-client rate limiting and response caching."""

__version__ = "0.1.0"
