"""Request throttling helpers."""

from .rate_limit import RateLimiter, RateLimitExceeded

__all__ = ["RateLimiter", "RateLimitExceeded"]
