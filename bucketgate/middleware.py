"""ASGI rate limiting middleware built on :class:`bucketgate.limiter.RateLimiter`."""

from __future__ import annotations

import inspect
from typing import Awaitable, Callable, Optional, Union

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from .limiter import RateLimiter
from .types import RateLimitResult

KeyFunc = Callable[[Request], str]
SkipFunc = Callable[[Request], bool]
RateLimitedHandler = Callable[
    [Request, RateLimitResult], Union[Response, Awaitable[Response]]
]


def client_address(request: Request) -> str:
    """Default key: the client host, or ``"unknown"`` when there is none."""

    return request.client.host if request.client else "unknown"


def too_many_requests(_request: Request, result: RateLimitResult) -> Response:
    return JSONResponse(
        {"error": "Too Many Requests", "retryAfter": result.retry_after},
        status_code=429,
    )


def rate_limit_headers(result: RateLimitResult, capacity: int) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(capacity),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at // 1000),
    }
    if not result.allowed and result.retry_after is not None:
        headers["Retry-After"] = str(result.retry_after)
    return headers


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Consume one token per request and reject once the bucket is empty.

    ``key_func`` picks the bucket, ``skip`` lets requests bypass limiting and
    ``on_rate_limited`` builds the rejection response. Without an explicit
    ``limiter`` the one on ``request.app.state.limiter`` is used, so an app can
    build and tear it down in its lifespan. Store failures are not caught
    here; they surface as server errors.
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: Optional[RateLimiter] = None,
        key_func: KeyFunc = client_address,
        skip: Optional[SkipFunc] = None,
        on_rate_limited: RateLimitedHandler = too_many_requests,
        headers: bool = True,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.key_func = key_func
        self.skip = skip
        self.on_rate_limited = on_rate_limited
        self.headers = headers

    async def dispatch(  # type: ignore[override]
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if self.skip is not None and self.skip(request):
            return await call_next(request)

        limiter = self.limiter if self.limiter is not None else request.app.state.limiter
        result = await limiter.consume(self.key_func(request))
        if result.allowed:
            response = await call_next(request)
        else:
            response = self.on_rate_limited(request, result)
            if inspect.isawaitable(response):
                response = await response

        if self.headers:
            response.headers.update(
                rate_limit_headers(result, limiter.options.capacity)
            )
        return response
