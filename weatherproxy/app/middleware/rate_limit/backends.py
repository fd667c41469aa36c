"""Rate limit storage backends.

The in-memory store keeps one dual-window entry per client key: an hourly
ceiling plus a short burst ceiling stacked on top of it. It is suitable for
single-instance deployments only; counters are lost on restart.
"""

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from weatherproxy.app.core.config import (
    DEFAULT_BURST_LIMIT,
    DEFAULT_HOURLY_LIMIT,
    DEFAULT_BURST_WINDOW_MS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    parse_positive_int,
)
from weatherproxy.app.core.logging import get_logger
from weatherproxy.app.middleware.rate_limit.models import RateLimitEntry, RateLimitResult

logger = get_logger(__name__)

DEFAULT_HOURLY_WINDOW_SECONDS = 3600.0
DEFAULT_BURST_WINDOW_SECONDS = DEFAULT_BURST_WINDOW_MS / 1000


def _positive_or_default(value: float, default: float) -> float:
    try:
        return value if value > 0 else default
    except TypeError:
        return default


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends."""

    hourly_limit: int
    burst_limit: int

    @abstractmethod
    def check(self, key: str) -> RateLimitResult:
        """Consume one request for ``key`` if both windows admit it."""

    @abstractmethod
    def peek(self, key: str) -> RateLimitResult:
        """Report the current status for ``key`` without consuming a request."""

    @abstractmethod
    def sweep(self) -> int:
        """Delete expired entries and return how many were removed."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""

    def now(self) -> float:
        return time.time()

    async def start(self) -> None:
        """Start background maintenance, if the backend needs any."""

    async def stop(self) -> None:
        """Stop background maintenance."""


class InMemoryRateLimitStore(RateLimitBackend):
    """Dual-window (hourly + burst) rate limiter backed by a dict.

    ``check`` is synchronous and runs under a lock, so concurrent requests
    for the same key can never both observe the pre-increment state. The
    burst ceiling is checked before the hourly ceiling; a caller at both
    limits is reported as burst-blocked.

    Usage:
        store = InMemoryRateLimitStore(hourly_limit=120, burst_limit=30)
        await store.start()   # periodic sweep of expired entries
        result = store.check("ip:203.0.113.5")
        await store.stop()
    """

    def __init__(
        self,
        hourly_limit: int = DEFAULT_HOURLY_LIMIT,
        burst_limit: int = DEFAULT_BURST_LIMIT,
        burst_window: float = DEFAULT_BURST_WINDOW_SECONDS,
        hourly_window: float = DEFAULT_HOURLY_WINDOW_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the store.

        Non-positive values fall back to the defaults.

        Args:
            hourly_limit: Requests allowed per hourly window
            burst_limit: Requests allowed per burst window
            burst_window: Burst window length in seconds
            hourly_window: Hourly window length in seconds
            sweep_interval: Seconds between background sweeps
            clock: Time source returning epoch seconds
        """
        self.hourly_limit = parse_positive_int(hourly_limit, DEFAULT_HOURLY_LIMIT)
        self.burst_limit = parse_positive_int(burst_limit, DEFAULT_BURST_LIMIT)
        self.burst_window = _positive_or_default(burst_window, DEFAULT_BURST_WINDOW_SECONDS)
        self.hourly_window = _positive_or_default(hourly_window, DEFAULT_HOURLY_WINDOW_SECONDS)
        self.sweep_interval = _positive_or_default(
            sweep_interval, float(DEFAULT_SWEEP_INTERVAL_SECONDS)
        )
        self._clock = clock

        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def check(self, key: str) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or now > entry.reset_time:
                # Both windows restart together with the hourly window
                entry = RateLimitEntry(
                    count=1,
                    reset_time=now + self.hourly_window,
                    burst_count=1,
                    burst_reset_time=now + self.burst_window,
                )
                self._entries[key] = entry
                return RateLimitResult(
                    allowed=True,
                    remaining=self.hourly_limit - 1,
                    reset_time=entry.reset_time,
                    burst_remaining=self.burst_limit - 1,
                    burst_reset_time=entry.burst_reset_time,
                )

            if now > entry.burst_reset_time:
                entry.burst_count = 0
                entry.burst_reset_time = now + self.burst_window

            if entry.burst_count >= self.burst_limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=max(0, self.hourly_limit - entry.count),
                    reset_time=entry.reset_time,
                    burst_remaining=0,
                    burst_reset_time=entry.burst_reset_time,
                )

            if entry.count >= self.hourly_limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=entry.reset_time,
                    burst_remaining=max(0, self.burst_limit - entry.burst_count),
                    burst_reset_time=entry.burst_reset_time,
                )

            entry.count += 1
            entry.burst_count += 1

            return RateLimitResult(
                allowed=True,
                remaining=self.hourly_limit - entry.count,
                reset_time=entry.reset_time,
                burst_remaining=self.burst_limit - entry.burst_count,
                burst_reset_time=entry.burst_reset_time,
            )

    def peek(self, key: str) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)

            if entry is None or now > entry.reset_time:
                return RateLimitResult(
                    allowed=True,
                    remaining=self.hourly_limit,
                    reset_time=now + self.hourly_window,
                    burst_remaining=self.burst_limit,
                    burst_reset_time=now + self.burst_window,
                )

            if now > entry.burst_reset_time:
                return RateLimitResult(
                    allowed=entry.count < self.hourly_limit,
                    remaining=max(0, self.hourly_limit - entry.count),
                    reset_time=entry.reset_time,
                    burst_remaining=self.burst_limit,
                    burst_reset_time=now + self.burst_window,
                )

            return RateLimitResult(
                allowed=entry.count < self.hourly_limit and entry.burst_count < self.burst_limit,
                remaining=max(0, self.hourly_limit - entry.count),
                reset_time=entry.reset_time,
                burst_remaining=max(0, self.burst_limit - entry.burst_count),
                burst_reset_time=entry.burst_reset_time,
            )

    def sweep(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [
                key for key, entry in self._entries.items()
                if now > entry.reset_time
            ]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired rate limit entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._task is not None:
            logger.debug("Rate limit sweeper already running")
            return

        # Bound to the running loop, so created per start
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_sweeps())
        logger.info(f"Started rate limit sweeper (interval: {self.sweep_interval}s)")

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if self._task is None or self._stop_event is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Rate limit sweeper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped rate limit sweeper")

    async def _run_sweeps(self) -> None:
        stop_event = self._stop_event
        assert stop_event is not None
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(
                    stop_event.wait(),
                    timeout=self.sweep_interval,
                )
            except asyncio.TimeoutError:
                # Interval elapsed
                try:
                    self.sweep()
                except Exception as e:
                    logger.error(f"Error during rate limit sweep: {e}")
