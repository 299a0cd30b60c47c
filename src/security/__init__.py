"""Caller access checks and request rate limiting for the HTTP layer."""

from src.security.access import (
    AccessRole,
    AccessValidator,
    ApiKeyAccessValidator,
    CallerContext,
)
from src.security.rate_limit import RateLimitDecision, RateLimiter

__all__ = [
    "AccessRole",
    "AccessValidator",
    "ApiKeyAccessValidator",
    "CallerContext",
    "RateLimitDecision",
    "RateLimiter",
]
