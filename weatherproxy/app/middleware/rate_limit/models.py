"""Rate limiting data models.

This module contains dataclasses for rate limit state and results.
All timestamps are epoch seconds.
"""

from dataclasses import dataclass


@dataclass
class RateLimitEntry:
    """Per-client counters for the hourly and burst windows."""
    count: int
    reset_time: float
    burst_count: int
    burst_reset_time: float


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check, derived from an entry at read time."""
    allowed: bool
    remaining: int
    reset_time: float
    burst_remaining: int
    burst_reset_time: float

    @property
    def burst_blocked(self) -> bool:
        return not self.allowed and self.burst_remaining == 0
