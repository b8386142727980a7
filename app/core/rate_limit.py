from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from time import monotonic

from fastapi import Request

from app.core.errors import APIError
from app.core.settings import get_settings

logger = logging.getLogger(__name__)


def allow_event(events: deque[float], *, now: float, window_seconds: float, max_events: int) -> bool:
    """Sliding-window check shared by the HTTP limiter and the websocket command limiter."""
    cutoff = now - window_seconds
    while events and events[0] <= cutoff:
        events.popleft()
    if len(events) >= max_events:
        return False
    events.append(now)
    return True


class InMemoryRateLimiter:
    def __init__(self, *, window_seconds: int, max_requests: int) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        with self._lock:
            return allow_event(
                self._events[key],
                now=monotonic(),
                window_seconds=self.window_seconds,
                max_events=self.max_requests,
            )

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


settings = get_settings()
auth_limiter = InMemoryRateLimiter(
    window_seconds=settings.auth_rate_limit_window_seconds,
    max_requests=settings.auth_rate_limit_max_requests,
)


def enforce_auth_rate_limit(request: Request) -> None:
    client_ip = request.client.host if request.client else "unknown"
    key = f"{client_ip}:{request.url.path}"
    logger.debug("Rate limit check key=%s", key)
    if not auth_limiter.hit(key):
        logger.warning("Rate limit exceeded for key=%s", key)
        raise APIError(status_code=429, code="rate_limited", message="Too many authentication requests")
