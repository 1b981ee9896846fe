from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import Settings, settings as default_settings
from .limiter import RateLimiter
from .logging_setup import RequestLogMiddleware, init_logging
from .metrics import LAT, REQS, router as metrics_router
from .middleware import RateLimitMiddleware, client_address
from .types import RateLimitResult


class Health(BaseModel):
    status: str
    time: str


class LimitStatus(BaseModel):
    key: str
    limit: int
    result: RateLimitResult


def api_key_or_client(request: Request) -> str:
    return request.headers.get("x-api-key") or client_address(request)


def create_app(
    settings: Optional[Settings] = None, limiter: Optional[RateLimiter] = None
) -> FastAPI:
    """Build the demo service.

    A limiter passed in stays owned by the caller. Otherwise each startup
    builds a fresh one from ``settings`` and shutdown destroys it.
    """

    settings = settings or default_settings
    injected = limiter
    skip_paths = settings.skip_paths()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if injected is not None:
            yield
            return
        owned = RateLimiter.from_settings(settings)
        app.state.limiter = owned
        try:
            yield
        finally:
            owned.destroy()
            app.state.limiter = None

    app = FastAPI(title="bucketgate", version="0.1.0", lifespan=lifespan)
    app.state.limiter = injected

    if settings.RATE_LIMIT_ENABLED:
        app.add_middleware(
            RateLimitMiddleware,
            key_func=api_key_or_client,
            skip=lambda request: request.url.path in skip_paths
            or request.url.path.startswith("/limits/"),
            headers=settings.RATE_LIMIT_HEADERS,
        )

    origins = [o.strip() for o in settings.CORS_ALLOW_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )
    app.add_middleware(RequestLogMiddleware)
    app.include_router(metrics_router())

    @app.middleware("http")
    async def _metrics(request: Request, call_next):
        method = request.method
        path = request.url.path
        start = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration = time.time() - start
            REQS.labels(method, path, str(status_code)).inc()
            LAT.labels(method, path).observe(duration)

    @app.get("/health", response_model=Health)
    def health():
        return Health(status="ok", time=datetime.now(timezone.utc).isoformat())

    @app.get("/api/data")
    def api_data():
        return {
            "message": "Hello from the API!",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/user")
    def api_user(x_api_key: str | None = Header(default=None, alias="X-API-Key")):
        return {"user": "John Doe", "apiKey": x_api_key or "none"}

    @app.get("/limits/{key}", response_model=LimitStatus)
    async def limit_status(key: str, request: Request):
        current: RateLimiter = request.app.state.limiter
        return LimitStatus(
            key=key,
            limit=current.options.capacity,
            result=await current.check(key),
        )

    return app


init_logging(default_settings.LOG_LEVEL)

app = create_app()
