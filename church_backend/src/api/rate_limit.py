"""
IP-based rate limiting for the /api routes.
Simple in-memory sliding window keyed by client IP; one process, no shared store.

The key is the socket peer address. Behind a reverse proxy, set FORWARDED_ALLOW_IPS so
uvicorn's ProxyHeadersMiddleware rewrites the peer from X-Forwarded-For, and only for
requests that arrive from those proxies.
"""
import logging
import time
from typing import Callable, Dict, List

from starlette import status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Extract client IP address from request"""
    if request.client:
        return request.client.host
    return "unknown"


# PUBLIC_INTERFACE
class SlidingWindowLimiter:
    """Allows at most `max_calls` hits per `window` seconds for each key."""

    def __init__(self, max_calls: int, window: int, clock: Callable[[], float] = time.monotonic):
        self.max_calls = max_calls
        self.window = window
        self.clock = clock
        self._hits: Dict[str, List[float]] = {}
        self._last_sweep = clock()

    def allow(self, key: str) -> bool:
        now = self.clock()
        self._sweep(now)
        timestamps = [t for t in self._hits.get(key, []) if now - t < self.window]
        if len(timestamps) >= self.max_calls:
            self._hits[key] = timestamps
            return False
        timestamps.append(now)
        self._hits[key] = timestamps
        return True

    def _sweep(self, now: float) -> None:
        # Drop clients whose newest hit has left the window; runs at most once per window
        if now - self._last_sweep < self.window:
            return
        self._last_sweep = now
        stale = [key for key, hits in self._hits.items() if not hits or now - hits[-1] >= self.window]
        for key in stale:
            del self._hits[key]
        if stale:
            logger.debug("Rate limiter dropped %d idle clients", len(stale))

    def __len__(self) -> int:
        return len(self._hits)


# PUBLIC_INTERFACE
class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: SlidingWindowLimiter, path_prefix: str = "/api/"):
        super().__init__(app)
        self.limiter = limiter
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(self.path_prefix):
            client_ip = get_client_ip(request)
            if not self.limiter.allow(client_ip):
                logger.warning("Rate limit exceeded for %s on %s", client_ip, request.url.path)
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={"error": "Too many requests, please try again later"},
                )
        return await call_next(request)
