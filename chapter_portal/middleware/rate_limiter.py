# chapter_portal/middleware/rate_limiter.py
# Per-caller rate limiting for the HTTP surface
# Uses in-memory sliding window counter; one process serves the whole chapter

import time
from typing import Callable, Dict, Tuple

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from chapter_portal.middleware.error_handler import create_error_response

logger = logging.getLogger(__name__)

# Paths that are never limited: health checks, scraping and the long-lived stream
EXEMPT_PATHS = ("/health", "/health/live", "/health/ready", "/metrics", "/api/events")


class SlidingWindowCounter:
    """
    Sliding window rate limiter.
    Weighted sum of the previous and current fixed windows.
    """

    def __init__(self, window_size: int = 60, max_requests: int = 100, clock: Callable[[], float] = time.time):
        self.window_size = window_size  # seconds
        self.max_requests = max_requests
        self._clock = clock
        # key -> (previous window count, current window count, window number)
        self._counters: Dict[str, Tuple[int, int, float]] = {}

    def _roll(self, key: str, now: float) -> Tuple[int, int, float]:
        """Counts for ``key`` shifted so that the current window is ``now``'s."""
        prev_count, curr_count, window = self._counters.get(key, (0, 0, 0.0))
        current = now // self.window_size
        if window == current:
            return prev_count, curr_count, window
        # Only the window right before the current one still weighs in
        prev_count = curr_count if window == current - 1 else 0
        return prev_count, 0, current

    def is_allowed(self, key: str) -> Tuple[bool, int]:
        """
        Count one request for ``key``.
        Returns (is_allowed, remaining_requests).
        """
        now = self._clock()
        prev_count, curr_count, window = self._roll(key, now)
        curr_count += 1
        self._counters[key] = (prev_count, curr_count, window)

        elapsed = (now % self.window_size) / self.window_size
        weighted = prev_count * (1 - elapsed) + curr_count
        return weighted <= self.max_requests, max(0, int(self.max_requests - weighted))

    def retry_after(self) -> int:
        """Whole seconds until the current window closes."""
        return max(1, int(self.window_size - self._clock() % self.window_size))

    def cleanup_old_entries(self, max_age: int = 300) -> int:
        """Drop keys idle for more than ``max_age`` seconds."""
        current_window = self._clock() // self.window_size
        stale = [
            key for key, (_, _, window_start) in self._counters.items()
            if current_window - window_start > max_age // self.window_size
        ]
        for key in stale:
            del self._counters[key]
        return len(stale)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-caller request allowance, one window for ``/api/`` and one for the rest.

    Callers are identified by the email the sign-in proxy supplies, so
    members sharing a NAT are counted separately; anonymous traffic falls
    back to the forwarded or peer address.
    """

    CLEANUP_EVERY = 300

    def __init__(self, app, api_limit: int = 120, general_limit: int = 300,
                 auth_header: str = "X-Authenticated-Email",
                 clock: Callable[[], float] = time.time):
        super().__init__(app)
        self._clock = clock
        self.api_limiter = SlidingWindowCounter(max_requests=api_limit, clock=clock)
        self.general_limiter = SlidingWindowCounter(max_requests=general_limit, clock=clock)
        self.auth_header = auth_header
        self._next_cleanup = clock() + self.CLEANUP_EVERY

    def caller_key(self, request: Request) -> str:
        email = (request.headers.get(self.auth_header) or "").strip().lower()
        if email:
            return f"user:{email}"
        forwarded = request.headers.get("X-Forwarded-For", "")
        address = forwarded.split(",")[0].strip() or (request.client.host if request.client else "")
        return f"addr:{address or 'unknown'}"

    def limiter_for(self, path: str) -> SlidingWindowCounter:
        return self.api_limiter if path.startswith("/api/") else self.general_limiter

    def _maybe_cleanup(self) -> None:
        now = self._clock()
        if now < self._next_cleanup:
            return
        dropped = self.api_limiter.cleanup_old_entries() + self.general_limiter.cleanup_old_entries()
        if dropped:
            logger.debug(f"Rate limiter dropped {dropped} idle callers")
        self._next_cleanup = now + self.CLEANUP_EVERY

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in EXEMPT_PATHS:
            return await call_next(request)

        self._maybe_cleanup()
        key = self.caller_key(request)
        limiter = self.limiter_for(path)
        allowed, remaining = limiter.is_allowed(key)

        if not allowed:
            retry_after = limiter.retry_after()
            logger.warning(f"Rate limit exceeded for {key} on {path}")
            response = create_error_response(
                error_code="RATE_LIMITED",
                message="Too many requests. Please slow down.",
                status_code=429,
            )
            response.headers["Retry-After"] = str(retry_after)
            response.headers["X-RateLimit-Remaining"] = "0"
            return response

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limiter.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
