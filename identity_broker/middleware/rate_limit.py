"""
Rate limiting middleware for the token API.

Two fixed one-minute windows:
- per client IP, for every route except the exempt ones;
- per customer id, for ``/api/customer/{id}...`` so one runaway workflow cannot
  turn into a flood of token introspection calls for a single customer.

Returns 429 Too Many Requests with Retry-After when either limit is exceeded.
"""
import logging
import time
from collections import defaultdict
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

DEFAULT_REQUESTS_PER_MINUTE_IP = 100
DEFAULT_REQUESTS_PER_MINUTE_CUSTOMER = 60
WINDOW_SECONDS = 60
CUSTOMER_PATH_PREFIX = "/api/customer/"


class WindowCounter:
    """In-memory counters keyed by (identifier, window_start); old windows are dropped."""

    def __init__(self, window_seconds: int = WINDOW_SECONDS, clock: Callable[[], float] = time.time):
        self._counts: dict[tuple[str, int], int] = defaultdict(int)
        self._window = window_seconds
        self._clock = clock

    def _window_start(self) -> int:
        return int(self._clock() // self._window) * self._window

    def hit(self, key: str) -> int:
        """Count a request for key in the current window; return the new count."""
        w = self._window_start()
        for stale in [k for k in self._counts if k[1] < w]:
            del self._counts[stale]
        self._counts[(key, w)] += 1
        return self._counts[(key, w)]


def get_client_ip(request: Request) -> str:
    """Resolve client IP, respecting X-Forwarded-For when behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "0.0.0.0"


def customer_id_from_path(path: str) -> Optional[str]:
    if not path.startswith(CUSTOMER_PATH_PREFIX):
        return None
    customer_id = path[len(CUSTOMER_PATH_PREFIX):].split("/", 1)[0]
    return customer_id or None


def _rate_limit_response(retry_after_seconds: int = WINDOW_SECONDS) -> Response:
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limited",
            "message": "Too many requests. Please retry after the time indicated in Retry-After.",
            "retry_after_seconds": retry_after_seconds,
        },
        headers={"Retry-After": str(retry_after_seconds)},
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        requests_per_minute_ip: int = DEFAULT_REQUESTS_PER_MINUTE_IP,
        requests_per_minute_customer: int = DEFAULT_REQUESTS_PER_MINUTE_CUSTOMER,
        exempt_paths: Optional[list[str]] = None,
        counter: Optional[WindowCounter] = None,
    ):
        super().__init__(app)
        self.rpm_ip = requests_per_minute_ip
        self.rpm_customer = requests_per_minute_customer
        self.exempt = set(exempt_paths or ["/health"])
        self.counter = counter or WindowCounter()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.exempt:
            return await call_next(request)

        client_ip = get_client_ip(request)
        if self.counter.hit(f"ip:{client_ip}") > self.rpm_ip:
            logger.warning("Rate limit exceeded for IP %s", client_ip)
            return _rate_limit_response()

        customer_id = customer_id_from_path(path)
        if customer_id and self.counter.hit(f"customer:{customer_id}") > self.rpm_customer:
            logger.warning("Rate limit exceeded for customer %s", customer_id)
            return _rate_limit_response()

        return await call_next(request)
