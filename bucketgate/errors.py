from __future__ import annotations


class RateLimiterError(Exception):
    """Base class for errors raised by bucketgate."""


class ConfigurationError(RateLimiterError, ValueError):
    """Raised at construction time for invalid limiter or store options."""
