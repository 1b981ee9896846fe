"""Data types shared by the engine, the stores and the middleware."""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError


def _to_decimal(value: Any) -> Any:
    # floats go through str() so 0.1 stays 0.1 instead of its binary expansion
    if isinstance(value, float):
        return Decimal(str(value))
    return value


class BucketState(BaseModel):
    """Fill level of one key's bucket as of its last update."""

    model_config = ConfigDict(frozen=True)

    tokens: Decimal
    last_refill: int

    @field_validator("tokens", mode="before")
    @classmethod
    def coerce_tokens(cls, value: Any) -> Any:
        return _to_decimal(value)


class RateLimitResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    remaining: int = Field(ge=0)
    reset_at: int
    retry_after: Optional[int] = None


class RateLimiterOptions(BaseModel):
    """Refill schedule: add ``refill_rate`` tokens every ``refill_interval`` ms,
    capped at ``capacity``."""

    model_config = ConfigDict(frozen=True)

    capacity: int = Field(gt=0)
    refill_rate: Decimal = Field(gt=0)
    refill_interval: int = Field(gt=0, description="milliseconds")

    @field_validator("refill_rate", mode="before")
    @classmethod
    def coerce_rate(cls, value: Any) -> Any:
        return _to_decimal(value)

    @classmethod
    def build(cls, **values: Any) -> "RateLimiterOptions":
        try:
            return cls(**values)
        except ValidationError as exc:
            bad = sorted({str(error["loc"][0]) for error in exc.errors() if error.get("loc")})
            raise ConfigurationError(
                f"Invalid rate limiter options: {', '.join(bad)}"
            ) from exc

    @property
    def ttl_ms(self) -> int:
        """Store TTL: twice the time an empty bucket needs to fill up."""

        return 2 * math.ceil(Decimal(self.capacity) / self.refill_rate) * self.refill_interval


class StoredEntry(BaseModel):
    state: BucketState
    expires_at: int
