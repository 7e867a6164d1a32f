"""Per-client fixed-window rate limiting."""

from __future__ import annotations

import logging
import math
import re
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

logger = logging.getLogger(__name__)

_RATE_LIMIT_PATTERN = re.compile(r"^\s*(\d+)\s*/\s*(?:(\d+)\s*)?([smhd])\s*$")
_UNIT_SECONDS = {"s": 1.0, "m": 60.0, "h": 3600.0, "d": 86400.0}

EXEMPT_PREFIXES = ("/health",)


class RouteClass(StrEnum):
    LOGIN = "login"
    REGISTER = "register"
    REFRESH_TOKEN = "refresh-token"
    FORGOT_PASSWORD = "forgot-password"
    RESET_PASSWORD = "reset-password"
    GENERAL = "general"


# POST-only auth endpoints with their own, stricter windows.
AUTH_ROUTES: dict[str, RouteClass] = {
    "/api/auth/login": RouteClass.LOGIN,
    "/api/auth/register": RouteClass.REGISTER,
    "/api/auth/refresh-token": RouteClass.REFRESH_TOKEN,
    "/api/auth/forgot-password": RouteClass.FORGOT_PASSWORD,
    "/api/auth/reset-password": RouteClass.RESET_PASSWORD,
}


@dataclass(frozen=True)
class RateLimit:
    """Parsed rate limit definition."""

    capacity: int
    window_seconds: float

    def describe_window(self) -> str:
        seconds = self.window_seconds
        if seconds >= 86400:
            return f"{int(seconds // 86400)} day(s)"
        if seconds >= 3600:
            return f"{int(seconds // 3600)} hour(s)"
        if seconds >= 60:
            return f"{int(seconds // 60)} minute(s)"
        return f"{int(seconds)} second(s)"


def parse_rate_limit(value: str) -> RateLimit:
    """Parse a rate limit string like '100/m' or '5/15m'."""
    match = _RATE_LIMIT_PATTERN.fullmatch(value)
    if match is None:
        raise ValueError(
            "rate_limit must match '<count>/<unit>' or '<count>/<multiplier><unit>'"
        )

    capacity = int(match.group(1))
    if capacity <= 0:
        raise ValueError("rate_limit count must be > 0")

    multiplier = int(match.group(2) or "1")
    if multiplier <= 0:
        raise ValueError("rate_limit window multiplier must be > 0")

    unit = match.group(3)
    window_seconds = multiplier * _UNIT_SECONDS[unit]
    return RateLimit(capacity=capacity, window_seconds=window_seconds)


def classify_route(method: str, path: str) -> RouteClass | None:
    """Map a request to its route class, or None when it is not rate limited."""
    normalized = path.rstrip("/").lower() or "/"
    if any(normalized.startswith(prefix) for prefix in EXEMPT_PREFIXES):
        return None
    if method.upper() == "POST" and normalized in AUTH_ROUTES:
        return AUTH_ROUTES[normalized]
    return RouteClass.GENERAL


@dataclass
class RateLimitWindow:
    """Request count for one (client IP, route class) since ``started_at``."""

    started_at: float
    limit: RateLimit
    count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def resets_at(self) -> float:
        return self.started_at + self.limit.window_seconds

    def expired(self, now: float) -> bool:
        return now >= self.resets_at


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    route_class: RouteClass
    limit: int
    remaining: int
    count: int
    reset_at: float
    retry_after: int
    window: str


class FixedWindowRateLimiter:
    """Fixed-window counters keyed by (client IP, route class).

    A missing or expired window is replaced by a fresh one holding the
    current request; otherwise the count is incremented and the request
    is rejected once the count exceeds the class limit. Windows of
    different clients never share state. Expired windows are swept every
    ``cleanup_interval_seconds``.
    """

    def __init__(
        self,
        rules: Mapping[RouteClass, RateLimit],
        *,
        cleanup_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        missing = set(RouteClass) - set(rules)
        if missing:
            raise ValueError(f"Missing rate limit rules for: {sorted(missing)}")
        self._rules = dict(rules)
        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._windows: dict[tuple[str, RouteClass], RateLimitWindow] = {}
        self._last_cleanup = clock()

    @classmethod
    def from_strings(
        cls,
        *,
        login: str,
        register: str,
        general: str,
        refresh_token: str = "10/5m",
        forgot_password: str = "3/1h",
        reset_password: str = "5/30m",
        cleanup_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> FixedWindowRateLimiter:
        return cls(
            {
                RouteClass.LOGIN: parse_rate_limit(login),
                RouteClass.REGISTER: parse_rate_limit(register),
                RouteClass.REFRESH_TOKEN: parse_rate_limit(refresh_token),
                RouteClass.FORGOT_PASSWORD: parse_rate_limit(forgot_password),
                RouteClass.RESET_PASSWORD: parse_rate_limit(reset_password),
                RouteClass.GENERAL: parse_rate_limit(general),
            },
            cleanup_interval_seconds=cleanup_interval_seconds,
            clock=clock,
        )

    def rule(self, route_class: RouteClass) -> RateLimit:
        return self._rules[route_class]

    def __len__(self) -> int:
        return len(self._windows)

    def _window(self, key: tuple[str, RouteClass], now: float) -> RateLimitWindow:
        window = self._windows.get(key)
        if window is not None:
            return window
        with self._registry_lock:
            window = self._windows.get(key)
            if window is None:
                window = RateLimitWindow(started_at=now, limit=self._rules[key[1]])
                self._windows[key] = window
            return window

    def hit(self, client_ip: str, route_class: RouteClass) -> RateLimitDecision:
        """Count one request and decide whether it is allowed."""
        now = self._clock()
        if now - self._last_cleanup >= self._cleanup_interval:
            self.sweep(now)

        key = (client_ip, route_class)
        while True:
            window = self._window(key, now)
            with window.lock:
                # A concurrent sweep may have evicted this window; retry on the live one.
                if self._windows.get(key) is not window:
                    continue
                if window.expired(now):
                    window.started_at = now
                    window.count = 0
                window.count += 1
                count = window.count
                reset_at = window.resets_at
                break

        limit = window.limit
        allowed = count <= limit.capacity
        decision = RateLimitDecision(
            allowed=allowed,
            route_class=route_class,
            limit=limit.capacity,
            remaining=max(0, limit.capacity - count),
            count=count,
            reset_at=reset_at,
            retry_after=max(0, math.ceil(reset_at - now)),
            window=limit.describe_window(),
        )
        if not allowed:
            logger.warning(
                "Rate limit exceeded for %s by client %s. Attempts: %s/%s within %s",
                route_class.value,
                client_ip,
                count,
                limit.capacity,
                decision.window,
            )
            if count >= limit.capacity * 2:
                logger.error(
                    "Potential brute force detected: client %s exceeded the %s limit %sx",
                    client_ip,
                    route_class.value,
                    count // limit.capacity,
                )
        return decision

    def sweep(self, now: float | None = None) -> int:
        """Evict expired windows. Returns the number removed."""
        now = self._clock() if now is None else now
        with self._registry_lock:
            stale = [key for key, window in self._windows.items() if window.expired(now)]
            for key in stale:
                del self._windows[key]
            self._last_cleanup = now
        if stale:
            logger.debug("Rate limiter cleaned up %s stale windows", len(stale))
        return len(stale)
