"""bucketgate: token bucket rate limiting with pluggable state storage."""

from typing import TYPE_CHECKING

from .errors import ConfigurationError, RateLimiterError
from .limiter import RateLimiter
from .storage import MemoryStorage, StorageAdapter
from .token_bucket import TokenBucket
from .types import BucketState, RateLimiterOptions, RateLimitResult

__version__ = "0.1.0"

if TYPE_CHECKING:  # pragma: no cover - import-time convenience for type checkers
    from .main import app as app

__all__ = [
    "BucketState",
    "ConfigurationError",
    "MemoryStorage",
    "RateLimitResult",
    "RateLimiter",
    "RateLimiterError",
    "RateLimiterOptions",
    "StorageAdapter",
    "TokenBucket",
    "app",
    "__version__",
]


def __getattr__(name: str):
    if name == "app":
        from .main import app as _app
        return _app
    raise AttributeError(f"module 'bucketgate' has no attribute {name!r}")
