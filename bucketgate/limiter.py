from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .clock import Clock, now_ms
from .storage import DEFAULT_CLEANUP_INTERVAL_MS, MemoryStorage, StorageAdapter
from .token_bucket import TokenBucket
from .types import RateLimiterOptions, RateLimitResult

if TYPE_CHECKING:  # pragma: no cover
    from .config import Settings


class RateLimiter:
    """
    Token bucket rate limiter.

    Example::

        limiter = RateLimiter(capacity=100, refill_rate=10, refill_interval=1000)
        result = await limiter.consume("user-123")
        if not result.allowed:
            ...  # reject, ask the caller to retry in result.retry_after seconds
        limiter.destroy()

    Without an explicit ``storage`` the limiter creates and owns a
    ``MemoryStorage``; ``destroy()`` only tears down a store it owns.
    """

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        refill_interval: int,
        storage: Optional[StorageAdapter] = None,
        cleanup_interval: int = DEFAULT_CLEANUP_INTERVAL_MS,
        clock: Clock = now_ms,
    ) -> None:
        options = RateLimiterOptions.build(
            capacity=capacity,
            refill_rate=refill_rate,
            refill_interval=refill_interval,
        )
        if storage is None:
            self._storage: StorageAdapter = MemoryStorage(
                cleanup_interval=cleanup_interval, clock=clock
            )
            self._owns_storage = True
        else:
            self._storage = storage
            self._owns_storage = False
        self._bucket = TokenBucket(options, self._storage, clock=clock)

    @classmethod
    def from_settings(
        cls, settings: "Settings", storage: Optional[StorageAdapter] = None
    ) -> "RateLimiter":
        return cls(
            capacity=settings.RATE_LIMIT_CAPACITY,
            refill_rate=settings.RATE_LIMIT_REFILL_RATE,
            refill_interval=settings.RATE_LIMIT_REFILL_INTERVAL_MS,
            storage=storage,
            cleanup_interval=settings.RATE_LIMIT_CLEANUP_INTERVAL_MS,
        )

    @property
    def options(self) -> RateLimiterOptions:
        return self._bucket.options

    @property
    def storage(self) -> StorageAdapter:
        return self._storage

    async def check(self, key: str) -> RateLimitResult:
        """Whether a request for ``key`` would be allowed; consumes nothing."""
        return await self._bucket.check(key)

    async def consume(self, key: str, tokens: int = 1) -> RateLimitResult:
        """Consume ``tokens`` for ``key`` (user id, client address, API key)."""
        return await self._bucket.consume(key, tokens)

    def destroy(self) -> None:
        if self._owns_storage and isinstance(self._storage, MemoryStorage):
            self._storage.destroy()

    async def __aenter__(self) -> "RateLimiter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.destroy()
