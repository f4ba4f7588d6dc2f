"""
Request Context Middleware Tests.

WHAT: Unit tests for the RequestContextMiddleware and correlation ids.

WHY: Correlation ids tie a seat change's log lines, provider calls and
alerts together. These tests ensure:
- An inbound id is kept end to end
- A missing id is generated
- Context is cleared after every request

HOW: Tests build Starlette requests from raw scopes and call dispatch().
"""

import pytest
from unittest.mock import MagicMock
from starlette.requests import Request
from starlette.responses import Response

from seatsync.middleware.request_context import (
    RequestContext,
    RequestContextMiddleware,
    _request_context,
    get_client_ip,
    get_correlation_id,
    get_request_context,
    new_correlation_id,
)


def _make_request(headers: dict = None, client_host: str = None, path: str = "/test") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": path,
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "query_string": b"",
        "client": (client_host, 12345) if client_host else None,
    }
    request = Request(scope)
    request._url = type("URL", (), {"path": path})()
    return request


class TestGetClientIp:
    """Tests for the get_client_ip function."""

    def test_x_real_ip_preferred(self):
        request = _make_request({"X-Real-IP": " 10.0.0.1 ", "X-Forwarded-For": "10.0.0.2"})
        assert get_client_ip(request) == "10.0.0.1"

    def test_first_forwarded_hop(self):
        request = _make_request({"X-Forwarded-For": "203.0.113.5, 10.0.0.2"})
        assert get_client_ip(request) == "203.0.113.5"

    def test_direct_connection(self):
        assert get_client_ip(_make_request(client_host="192.168.1.9")) == "192.168.1.9"

    def test_unknown_fallback(self):
        assert get_client_ip(_make_request()) == "unknown"


class TestCorrelationIds:
    def test_new_correlation_id_has_prefix(self):
        correlation_id = new_correlation_id("seat-update-12")
        assert correlation_id.startswith("seat-update-12-")
        assert len(correlation_id) == len("seat-update-12-") + 36

    def test_ids_are_unique(self):
        assert new_correlation_id("reconcile") != new_correlation_id("reconcile")

    def test_no_correlation_id_outside_request(self):
        assert get_correlation_id() is None

    def test_correlation_id_from_context(self):
        token = _request_context.set(
            RequestContext(request_id="req-1", ip_address="1.2.3.4", path="/x", method="GET")
        )
        try:
            assert get_correlation_id() == "req-1"
        finally:
            _request_context.reset(token)


@pytest.mark.asyncio
class TestRequestContextMiddleware:
    """Tests for the RequestContextMiddleware class."""

    async def test_generates_request_id(self):
        async def call_next(req):
            return Response(content="OK", status_code=200)

        middleware = RequestContextMiddleware(app=MagicMock())
        response = await middleware.dispatch(_make_request(), call_next)

        # UUID4 format (36 chars with hyphens)
        assert len(response.headers["X-Request-ID"]) == 36

    async def test_inbound_request_id_kept(self):
        seen = {}

        async def call_next(req):
            seen["correlation_id"] = get_correlation_id()
            seen["context"] = req.state.context
            return Response(content="OK", status_code=200)

        middleware = RequestContextMiddleware(app=MagicMock())
        response = await middleware.dispatch(
            _make_request({"X-Request-ID": "cron-run-42", "X-Real-IP": "10.1.1.1"}, path="/api/cron"),
            call_next,
        )

        assert response.headers["X-Request-ID"] == "cron-run-42"
        assert seen["correlation_id"] == "cron-run-42"
        assert seen["context"].ip_address == "10.1.1.1"
        assert seen["context"].path == "/api/cron"
        assert seen["context"].method == "POST"

    async def test_correlation_header_accepted(self):
        async def call_next(req):
            return Response(content="OK", status_code=200)

        middleware = RequestContextMiddleware(app=MagicMock())
        response = await middleware.dispatch(
            _make_request({"X-Correlation-ID": "upstream-7"}), call_next
        )

        assert response.headers["X-Request-ID"] == "upstream-7"

    async def test_context_cleared_after_request(self):
        async def call_next(req):
            return Response(content="OK", status_code=200)

        middleware = RequestContextMiddleware(app=MagicMock())
        await middleware.dispatch(_make_request(), call_next)

        assert get_request_context() is None

    async def test_context_cleared_on_error(self):
        async def call_next(req):
            raise RuntimeError("handler failed")

        middleware = RequestContextMiddleware(app=MagicMock())
        with pytest.raises(RuntimeError):
            await middleware.dispatch(_make_request(), call_next)

        assert get_request_context() is None
