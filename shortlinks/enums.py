"""Shared enums for the short-link service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["CacheStatus", "ErrorCode", "HealthStatus", "LinkState", "RequestStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    NOT_SERVABLE = "not_servable"
    CONFLICT = "conflict"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics and stats payloads."""

    HIT = "hit"
    MISS = "miss"


class LinkState(StrEnum):
    """Servability of a stored link at a given instant."""

    SERVABLE = "servable"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class ErrorCode(StrEnum):
    """Machine-readable error codes rendered in API error bodies."""

    VALIDATION = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "URL_INACTIVE"
    EXPIRED = "URL_EXPIRED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    FORBIDDEN = "FORBIDDEN"
    UNAUTHORIZED = "UNAUTHORIZED"
    INTERNAL = "INTERNAL_ERROR"
