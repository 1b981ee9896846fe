"""Token bucket accounting.

Each bucket holds up to ``capacity`` tokens and gains ``refill_rate`` tokens
every ``refill_interval`` ms. Nothing runs between calls: the refill is
recomputed from the stored ``(tokens, last_refill)`` pair whenever a key is
touched, in whole intervals only, so ``last_refill`` never drifts off the
bucket's schedule.
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Tuple

from .clock import Clock, now_ms
from .metrics import DECISIONS
from .storage import StorageAdapter
from .types import BucketState, RateLimiterOptions, RateLimitResult

logger = logging.getLogger(__name__)


class TokenBucket:
    def __init__(
        self,
        options: RateLimiterOptions,
        storage: StorageAdapter,
        clock: Clock = now_ms,
    ) -> None:
        self.options = options
        self.storage = storage
        self._clock = clock
        self._capacity = Decimal(options.capacity)
        self._ttl_ms = options.ttl_ms

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    def refill(self, state: BucketState, now: int) -> Tuple[Decimal, int]:
        """Return ``(tokens, last_refill)`` as of ``now``."""

        interval = self.options.refill_interval
        # a clock that steps backwards grants nothing rather than draining tokens
        intervals = max(0, (now - state.last_refill) // interval)
        tokens = min(self._capacity, state.tokens + intervals * self.options.refill_rate)
        return tokens, state.last_refill + intervals * interval

    def reset_at(self, tokens: Decimal, last_refill: int) -> int:
        """Timestamp (ms) at which the bucket is next completely full."""

        if tokens >= self._capacity:
            return last_refill
        needed = math.ceil((self._capacity - tokens) / self.options.refill_rate)
        return last_refill + needed * self.options.refill_interval

    def retry_after(self, last_refill: int, now: int) -> int:
        """Seconds until the next single-token refill."""

        next_refill = last_refill + self.options.refill_interval
        return max(0, math.ceil((next_refill - now) / 1000))

    async def _load(self, key: str, now: int) -> BucketState:
        state = await self.storage.get(key)
        if state is None:
            return BucketState(tokens=self._capacity, last_refill=now)
        return state

    def _result(
        self, allowed: bool, tokens: Decimal, last_refill: int, now: int
    ) -> RateLimitResult:
        return RateLimitResult(
            allowed=allowed,
            remaining=math.floor(tokens),
            reset_at=self.reset_at(tokens, last_refill),
            retry_after=None if allowed else self.retry_after(last_refill, now),
        )

    async def check(self, key: str) -> RateLimitResult:
        """Report whether one token is available without consuming it."""

        now = self._clock()
        tokens, last_refill = self.refill(await self._load(key, now), now)
        return self._result(tokens >= 1, tokens, last_refill, now)

    async def consume(self, key: str, tokens: int = 1) -> RateLimitResult:
        """Take ``tokens`` from the bucket for ``key`` if enough are available.

        A rejected call writes nothing back, not even the recomputed refill.
        The read and the write are not atomic: concurrent calls for the same
        key may both read the same state and one consumption can be lost.
        """

        if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens <= 0:
            raise ValueError(f"tokens must be a positive integer, got {tokens!r}")

        now = self._clock()
        current, last_refill = self.refill(await self._load(key, now), now)

        if current < tokens:
            DECISIONS.labels("rejected").inc()
            logger.debug(
                "rejected key=%s requested=%d available=%s", key, tokens, current
            )
            return self._result(False, current, last_refill, now)

        left = current - tokens
        await self.storage.set(
            key, BucketState(tokens=left, last_refill=last_refill), self._ttl_ms
        )
        DECISIONS.labels("allowed").inc()
        logger.debug("allowed key=%s consumed=%d left=%s", key, tokens, left)
        return self._result(True, left, last_refill, now)
