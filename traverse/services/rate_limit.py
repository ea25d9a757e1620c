"""In-memory fixed-window rate limiting per client."""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Mapping


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: float = 60.0


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_in: int  # seconds until the window resets

    def headers(self) -> dict[str, str]:
        return {
            "Retry-After": str(self.reset_in),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in),
        }


# Expensive streaming analyses
STRICT = RateLimitConfig(max_requests=10)
STANDARD = RateLimitConfig(max_requests=30)
RELAXED = RateLimitConfig(max_requests=100)


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def check(self, client_id: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()
        self._evict(now)
        window = self._windows.get(client_id)
        if window is None or window.reset_at <= now:
            window = _Window(count=0, reset_at=now + config.window_seconds)
            self._windows[client_id] = window
        window.count += 1
        return RateLimitResult(
            allowed=window.count <= config.max_requests,
            limit=config.max_requests,
            remaining=max(0, config.max_requests - window.count),
            reset_in=max(1, math.ceil(window.reset_at - now)),
        )

    def reset(self) -> None:
        self._windows.clear()

    def _evict(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if window.reset_at <= now]
        for key in expired:
            del self._windows[key]


def client_identifier(headers: Mapping[str, str], peer: str | None = None) -> str:
    """X-Forwarded-For first hop, then X-Real-IP, then the socket peer."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return peer or "unknown-client"


limiter = RateLimiter()
