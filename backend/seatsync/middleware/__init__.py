"""Middleware package."""

from seatsync.middleware.request_context import (
    RequestContext,
    RequestContextMiddleware,
    get_correlation_id,
    get_request_context,
    new_correlation_id,
)

__all__ = [
    "RequestContext",
    "RequestContextMiddleware",
    "get_correlation_id",
    "get_request_context",
    "new_correlation_id",
]
