"""
Request context middleware for correlation ids.

WHAT: Middleware that assigns every request a correlation id and makes it
available to services, alerts and log lines for the rest of the request.

WHY: A seat change touches our API, the billing provider and possibly an
alert email. Operators need one id to grep for across all of them. Jobs
that run outside a request mint their own ids with ``new_correlation_id``.

HOW: Uses Starlette's request state plus a ContextVar, so code without
access to the request object can still read the current id.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"


@dataclass
class RequestContext:
    """
    Container for request-scoped context data.

    Fields:
    - request_id: Correlation id for the request (inbound or generated)
    - ip_address: Client IP (considering proxies)
    - path: Request path
    - method: HTTP method
    """

    request_id: str
    ip_address: str
    path: str
    method: str


_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """Get the current request context, or None outside a request."""
    return _request_context.get()


def get_correlation_id() -> Optional[str]:
    """Return the correlation id of the current request, if any."""
    context = _request_context.get()
    return context.request_id if context else None


def new_correlation_id(prefix: str) -> str:
    """
    Mint a correlation id for one unit of billing work.

    Examples: ``seat-update-<org>-<uuid>``, ``pending-sync-<uuid>``,
    ``reconcile-<uuid>``.
    """
    return f"{prefix}-{uuid.uuid4()}"


def get_client_ip(request: Request) -> str:
    """
    Extract the real client IP address from a request.

    HOW: Checks X-Real-IP, then the first hop of X-Forwarded-For, then the
    direct connection address.
    """
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip.strip()

    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    WHAT: Reuses an inbound X-Request-ID / X-Correlation-ID header when the
    caller sent one, otherwise generates a UUID, and echoes the id back in
    the X-Request-ID response header.

    WHY: Cron runners and internal services that already carry an id keep
    it end to end, so their logs line up with ours.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = (
            request.headers.get(REQUEST_ID_HEADER)
            or request.headers.get(CORRELATION_ID_HEADER)
            or str(uuid.uuid4())
        )

        context = RequestContext(
            request_id=request_id,
            ip_address=get_client_ip(request),
            path=request.url.path,
            method=request.method,
        )
        request.state.context = context
        token = _request_context.set(context)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            _request_context.reset(token)
