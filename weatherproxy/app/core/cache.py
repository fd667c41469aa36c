"""Short-TTL response caches for the upstream proxy routes.

Each upstream domain (weather, METAR, precipitation, pollen, air quality,
news) keeps an independent keyed store so that one domain's traffic never
evicts another's.
Stores are process-local; a restart empties them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import threading
import time
from typing import Callable, Dict, Generic, Iterator, Optional, TypeVar

T = TypeVar("T")

# ~1.1 km at the equator
COORDINATE_PRECISION = 2

CACHE_DOMAINS = (
    "weather",
    "metar",
    "precipitation",
    "precipitation_history",
    "pollen",
    "air_quality",
    "news",
)


@dataclass
class CacheEntry(Generic[T]):
    """Cached payload with an absolute expiry timestamp."""

    data: T
    expires: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires


class CacheBackend(ABC, Generic[T]):
    """Abstract base class for response cache backends."""

    @abstractmethod
    def get(self, key: str) -> Optional[T]:
        """Return the cached payload, or None on a miss or stale entry."""

    @abstractmethod
    def set(self, key: str, data: T, ttl: float) -> None:
        """Store ``data`` for ``ttl`` seconds, replacing any existing entry."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a single entry if present."""

    @abstractmethod
    def sweep(self) -> int:
        """Delete expired entries and return how many were removed."""

    @abstractmethod
    def clear(self) -> None:
        """Clear all entries from the cache."""


class InMemoryCache(CacheBackend[T]):
    """In-memory TTL cache.

    ``get`` never deletes: a stale entry is reported as a miss and left for
    the sweep that runs after every ``set``. Maps stay small (one entry per
    distinct query key), so sweeping on each write is acceptable.

    Example:
        >>> cache = InMemoryCache("metar")
        >>> cache.set("KJFK", {"station": "KJFK"}, ttl=600)
        >>> cache.get("KJFK")
        {'station': 'KJFK'}
    """

    def __init__(self, name: str = "default", clock: Callable[[], float] = time.time) -> None:
        self.name = name
        self._clock = clock
        self._data: Dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None or not entry.is_fresh(self._clock()):
                return None
            return entry.data

    def set(self, key: str, data: T, ttl: float) -> None:
        with self._lock:
            self._data[key] = CacheEntry(data=data, expires=self._clock() + ttl)
        self.sweep()

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def sweep(self) -> int:
        with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._data.items() if entry.expires < now
            ]
            for key in expired_keys:
                del self._data[key]
            return len(expired_keys)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class CacheRegistry:
    """Holds one independent cache per upstream domain."""

    def __init__(
        self,
        domains: tuple[str, ...] = CACHE_DOMAINS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._caches: Dict[str, CacheBackend] = {
            domain: InMemoryCache(domain, clock=clock) for domain in domains
        }

    def __getitem__(self, domain: str) -> CacheBackend:
        return self._caches[domain]

    def __iter__(self) -> Iterator[str]:
        return iter(self._caches)

    def sizes(self) -> Dict[str, int]:
        return {name: len(cache) for name, cache in self._caches.items()}

    def clear(self) -> None:
        for cache in self._caches.values():
            cache.clear()


def coordinate_cache_key(lat: float, lon: float) -> str:
    """Round coordinates so near-duplicate queries share one cache line."""
    return f"{lat:.{COORDINATE_PRECISION}f},{lon:.{COORDINATE_PRECISION}f}"
