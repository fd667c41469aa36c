"""Core utilities for the weather proxy."""

from weatherproxy.app.core.cache import (
    CacheBackend,
    CacheRegistry,
    InMemoryCache,
    coordinate_cache_key,
)
from weatherproxy.app.core.config import Settings, parse_positive_int, settings
from weatherproxy.app.core.logging import get_logger, setup_logging

__all__ = [
    "CacheBackend",
    "CacheRegistry",
    "InMemoryCache",
    "coordinate_cache_key",
    "Settings",
    "parse_positive_int",
    "settings",
    "get_logger",
    "setup_logging",
]
