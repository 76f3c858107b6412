"""
Rate limiter (in-memory sliding window)

Gates every mutating endpoint. Keys are user ids (chat, vote) or
user id + client address (billing). Each check evicts timestamps older
than the window before counting.

The window map is process-wide state. It is advisory: with several
worker processes or instances every process keeps its own window, so a
multi-instance deployment needs a shared counter store instead.
"""

import logging
import time
from typing import Dict, List, Optional

from fastapi import Request

from app.config import settings

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per key within ``window_seconds``."""

    def __init__(self, max_requests: int, window_seconds: float):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: Dict[str, List[float]] = {}
        self._last_sweep = 0.0

    def check(self, key: str, now: Optional[float] = None) -> bool:
        """Return True if request is allowed, False if rate-limited."""
        now = time.time() if now is None else now
        cutoff = now - self.window_seconds

        if now - self._last_sweep >= self.window_seconds:
            self._sweep(cutoff)
            self._last_sweep = now

        # Remove timestamps outside the window
        window = [t for t in self._windows.get(key, ()) if t > cutoff]

        if len(window) >= self.max_requests:
            self._windows[key] = window
            logger.info(f"Rate limit hit for {key} ({self.max_requests}/{self.window_seconds}s)")
            return False

        window.append(now)
        self._windows[key] = window
        return True

    def _sweep(self, cutoff: float) -> None:
        """Forget keys with no request inside the window."""
        idle = [key for key, window in self._windows.items() if not window or window[-1] <= cutoff]
        for key in idle:
            del self._windows[key]

    def tracked_keys(self) -> int:
        return len(self._windows)

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)


def rate_limit_key(request: Optional[Request], user_id: str) -> str:
    """Billing key: user id plus the caller's address when known."""
    client_host = None
    if request is not None:
        forwarded = request.headers.get("x-forwarded-for", "")
        client_host = forwarded.split(",")[0].strip() or (request.client.host if request.client else None)
    return f"{user_id}:{client_host}" if client_host else user_id


# Singleton instance
_rate_limiter: Optional[SlidingWindowRateLimiter] = None


def get_rate_limiter() -> SlidingWindowRateLimiter:
    """Get the process-wide rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = SlidingWindowRateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _rate_limiter
