"""Fixed-window rate limiting with an injected store and clock."""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass


@dataclass
class Window:
    """Requests counted for one client in the current window."""

    count: int
    reset_at: float


class RateLimitStore:
    """In-memory client key → Window map.

    One instance is shared by the limiters that should count together;
    nothing here is process-global.
    """

    def __init__(self) -> None:
        self._windows: dict[str, Window] = {}

    def get(self, key: str) -> Window | None:
        return self._windows.get(key)

    def set(self, key: str, window: Window) -> None:
        self._windows[key] = window

    def purge_expired(self, now: float) -> int:
        """Drop windows that have already reset; returns how many."""
        expired = [key for key, window in self._windows.items() if window.reset_at <= now]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int | None = None

    def headers(self) -> dict[str, str]:
        """Response headers describing the decision."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """Allows ``max_requests`` per client per ``window_seconds``.

    Args:
        max_requests: Requests allowed in one window.
        window_seconds: Window length.
        store: Window storage; a private one is created when omitted.
            Expired windows are purged at most once per window, when a new
            window opens.
        clock: Returns the current time in seconds.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60,
        store: RateLimitStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_requests < 1:
            msg = "max_requests must be at least 1"
            raise ValueError(msg)
        if window_seconds <= 0:
            msg = "window_seconds must be positive"
            raise ValueError(msg)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.store = store if store is not None else RateLimitStore()
        self._clock = clock
        self._next_purge = 0.0

    @classmethod
    def strict(cls, **kwargs) -> RateLimiter:
        return cls(10, 60, **kwargs)

    @classmethod
    def default(cls, **kwargs) -> RateLimiter:
        return cls(60, 60, **kwargs)

    @classmethod
    def lenient(cls, **kwargs) -> RateLimiter:
        return cls(120, 60, **kwargs)

    def check(self, key: str) -> RateLimitDecision:
        """Count one request from *key* and decide whether it may proceed."""
        now = self._clock()
        window = self.store.get(key)
        if window is None or window.reset_at <= now:
            if now >= self._next_purge:
                self.store.purge_expired(now)
                self._next_purge = now + self.window_seconds
            window = Window(count=0, reset_at=now + self.window_seconds)
            self.store.set(key, window)

        if window.count >= self.max_requests:
            return RateLimitDecision(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                reset_at=window.reset_at,
                retry_after=max(math.ceil(window.reset_at - now), 1),
            )

        window.count += 1
        return RateLimitDecision(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - window.count,
            reset_at=window.reset_at,
        )


def client_key(headers: Mapping[str, str]) -> str:
    """Identify a client: bearer token first, then the connecting IP."""
    lowered = {name.lower(): value for name, value in headers.items()}
    auth = lowered.get("authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return f"token:{token}"
    ip = lowered.get("cf-connecting-ip") or lowered.get("x-forwarded-for", "").split(",")[0]
    ip = ip.strip()
    return f"ip:{ip}" if ip else "ip:unknown"
