"""
In-memory sliding-window rate limiting for the auth endpoints.
"""
import threading
import time
from collections import defaultdict
from typing import Dict, List, Tuple

from fastapi import HTTPException, Request, status

from settings import settings


class RateLimiter:
    """
    Sliding-window limiter keyed by an arbitrary identifier.

    State lives in process memory, so limits apply per worker.
    """

    def __init__(self, cleanup_interval: int = 60):
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()
        self._last_cleanup = time.time()
        self._cleanup_interval = cleanup_interval

    def _cleanup_old_entries(self, now: float, window_seconds: int) -> None:
        """Drop timestamps outside the window and identifiers left with none. Caller holds the lock."""
        if now - self._last_cleanup < self._cleanup_interval:
            return

        cutoff = now - window_seconds * 2
        for identifier in list(self._requests.keys()):
            recent = [ts for ts in self._requests[identifier] if ts > cutoff]
            if recent:
                self._requests[identifier] = recent
            else:
                del self._requests[identifier]

        self._last_cleanup = now

    def tracked_identifiers(self) -> int:
        with self._lock:
            return len(self._requests)

    def is_allowed(self, identifier: str, max_requests: int, window_seconds: int = 60) -> Tuple[bool, int, int]:
        """
        Check and record a request.

        Returns:
            Tuple of (is_allowed, remaining_requests, retry_after_seconds)
        """
        now = time.time()
        window_start = now - window_seconds

        with self._lock:
            self._cleanup_old_entries(now, window_seconds)
            in_window = [ts for ts in self._requests[identifier] if ts > window_start]

            if len(in_window) >= max_requests:
                self._requests[identifier] = in_window
                retry_after = int(min(in_window) + window_seconds - now) + 1
                return False, 0, retry_after

            in_window.append(now)
            self._requests[identifier] = in_window
            return True, max_requests - len(in_window), 0

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()


rate_limiter = RateLimiter()


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def auth_rate_limit(request: Request) -> None:
    """Dependency limiting auth endpoints per client IP and path."""
    identifier = f"{request.url.path}:{client_ip(request)}"
    allowed, _, retry_after = rate_limiter.is_allowed(identifier, settings.AUTH_RATE_LIMIT, window_seconds=60)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests, please try again later",
            headers={"Retry-After": str(retry_after)},
        )
