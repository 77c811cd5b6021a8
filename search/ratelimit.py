"""
Fixed-window rate limiting keyed by caller network identity.

In-memory and per process: a deployment with several workers enforces an
approximation of the configured limit. Entries are lost on restart.
"""
from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict

from django.apps import apps
from rest_framework.throttling import BaseThrottle

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = "unknown"

# Checked in order; the first populated header wins
IDENTITY_HEADERS = ("HTTP_X_FORWARDED_FOR", "HTTP_X_REAL_IP", "HTTP_CF_CONNECTING_IP")


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in_ms: int


class _Window:
    __slots__ = ("count", "reset_at")

    def __init__(self, count: int, reset_at: float):
        self.count = count
        self.reset_at = reset_at


class FixedWindowRateLimiter:
    """Thread-safe fixed-window counter, one window per caller identity."""

    def __init__(
        self,
        max_requests: int,
        window_ms: int,
        clock: Callable[[], float] = time.monotonic,
        sweep_probability: float = 0.1,
        rng: Callable[[], float] = random.random,
    ):
        if max_requests < 1 or window_ms < 1:
            raise ValueError("max_requests and window_ms must be positive")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._clock = clock
        self._sweep_probability = sweep_probability
        self._rng = rng
        self._windows: Dict[str, _Window] = {}
        self._lock = Lock()

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _sweep(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now > w.reset_at]
        for k in expired:
            del self._windows[k]

    def check(self, identity: str) -> RateLimitResult:
        """Count one request for ``identity`` and say whether it may proceed."""
        now = self._now_ms()
        with self._lock:
            if self._rng() < self._sweep_probability:
                self._sweep(now)

            window = self._windows.get(identity)
            if window is None or now > window.reset_at:
                self._windows[identity] = _Window(1, now + self.window_ms)
                return RateLimitResult(True, self.max_requests - 1, self.window_ms)

            reset_in = max(int(math.ceil(window.reset_at - now)), 0)
            if window.count >= self.max_requests:
                return RateLimitResult(False, 0, reset_in)

            window.count += 1
            return RateLimitResult(True, self.max_requests - window.count, reset_in)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


def client_identity(request) -> str:
    meta = request.META
    for header in IDENTITY_HEADERS:
        value = (meta.get(header) or "").split(",")[0].strip()
        if value:
            return value
    return UNKNOWN_IDENTITY


class BrokerRateThrottle(BaseThrottle):
    """
    DRF throttle backed by one of the limiters the search app owns.
    Subclasses (or views) pick the limiter through ``scope``.
    """
    scope: str = "search"

    def __init__(self):
        self.result: RateLimitResult | None = None

    def get_limiter(self) -> FixedWindowRateLimiter:
        return apps.get_app_config("search").limiters[self.scope]

    def allow_request(self, request, view):
        ident = client_identity(request)
        self.result = self.get_limiter().check(ident)
        if not self.result.allowed:
            logger.warning("rate limit exceeded: scope=%s ident=%s", self.scope, ident)
        return self.result.allowed

    def wait(self):
        if self.result is None:
            return None
        return max(math.ceil(self.result.reset_in_ms / 1000), 1)


class SearchRateThrottle(BrokerRateThrottle):
    scope = "search"


class CreateOrderRateThrottle(BrokerRateThrottle):
    scope = "create_order"


class CaptureRateThrottle(BrokerRateThrottle):
    scope = "capture"


class ManualTransferRateThrottle(BrokerRateThrottle):
    scope = "manual_transfer"
