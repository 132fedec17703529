"""Shared enums for the short-link service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "CacheStatus", "LockRole", "FollowerOutcome", "RateLimitDecision"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class LockRole(StrEnum):
    """Which side of the resolution lock a request ended up on."""

    OWNER = "owner"
    FOLLOWER = "follower"


class FollowerOutcome(StrEnum):
    """How a follower's poll loop ended."""

    CACHE_FILLED = "cache_filled"
    LOCK_RELEASED_EMPTY = "lock_released_empty"
    BUDGET_EXHAUSTED = "budget_exhausted"


class RateLimitDecision(StrEnum):
    ADMITTED = "admitted"
    DENIED = "denied"
    STORE_ERROR = "store_error"
