"""Tests for the HTTP collaborator and its error classification."""

from __future__ import annotations

import httpx
import pytest

from loadsim.core.client import classify_exception, classify_http_error
from loadsim.core.cursor import Cursor
from loadsim.core.metrics import MetricsCollector


class TestClassifyHttpError:
    """Verify canonical error_type mapping for HTTP status codes."""

    @pytest.mark.parametrize(
        "status,expected",
        [
            (200, None),
            (201, None),
            (204, None),
            (304, None),
            (None, "no_response"),
            (400, "client_error"),
            (404, "not_found"),
            (409, "conflict"),
            (422, "unprocessable"),
            (429, "rate_limited"),
            (500, "server_error"),
            (503, "server_error"),
            (600, "http_600"),
        ],
    )
    def test_status_mapping(self, status, expected):
        assert classify_http_error(status) == expected


class TestClassifyException:
    """Verify canonical error_type for common httpx exceptions."""

    def test_timeout(self):
        assert classify_exception(httpx.ReadTimeout("timed out")) == "network_timeout"

    def test_connect_error(self):
        assert classify_exception(httpx.ConnectError("refused")) == "network_connect"

    def test_protocol_error(self):
        assert classify_exception(httpx.RemoteProtocolError("bad frame")) == "network_protocol"

    def test_generic_http_error(self):
        assert classify_exception(httpx.DecodingError("bad encoding")) == "network_error"

    def test_non_httpx_exception(self):
        assert classify_exception(RuntimeError("oops")) == "RuntimeError"


class TestComputerApiClient:
    @pytest.mark.asyncio
    async def test_requests_follow_the_api_surface(self, make_client):
        seen: list[tuple[str, str, dict]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path, dict(request.url.params)))
            if request.method == "POST":
                return httpx.Response(201, json={"id": 1})
            if request.method == "DELETE":
                return httpx.Response(204)
            return httpx.Response(200, json=[])

        async with make_client(handler=handler) as client:
            await client.create_computer({"name": "PC-1"})
            await client.paginate(None, 20)
            await client.paginate(Cursor("2026-01-01T00:00:00Z", 9), 20)
            await client.search_gpu("RTX 4070")
            await client.search_ram(32)
            await client.delete_computer("PC 1")

        assert seen == [
            ("POST", "/computer", {}),
            ("GET", "/computer/pagination", {"limit": "20"}),
            ("GET", "/computer/pagination", {"createdAt": "2026-01-01T00:00:00Z", "id": "9", "limit": "20"}),
            ("GET", "/computer/search/gpu/RTX 4070", {}),
            ("GET", "/computer/search/ram/32", {}),
            ("DELETE", "/computer/PC 1", {}),
        ]

    @pytest.mark.asyncio
    async def test_emits_builtin_http_metrics(self, make_client):
        metrics = MetricsCollector()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500 if request.method == "POST" else 200, json=[])

        async with make_client(handler=handler, metrics=metrics) as client:
            await client.create_computer({"name": "x"}, tags={"phase": "w"})
            await client.paginate(None, 5, tags={"phase": "r"})

        snapshot = await metrics.snapshot()
        assert snapshot.select("http_req_duration").count == 2
        assert snapshot.select("http_req_failed", {"operation": "insert"}).rate == 1.0
        assert snapshot.select("http_req_failed", {"operation": "pagination", "phase": "r"}).rate == 0.0

    @pytest.mark.asyncio
    async def test_delete_404_is_not_a_failed_request(self, make_client):
        metrics = MetricsCollector()
        async with make_client(handler=lambda r: httpx.Response(404), metrics=metrics) as client:
            result = await client.delete_computer("missing")

        assert result.status_code == 404
        assert (await metrics.snapshot()).select("http_req_failed").rate == 0.0

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_result(self, make_client, capturing_logger):
        metrics = MetricsCollector()

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler=handler, metrics=metrics) as client:
            result = await client.search_ram(16, tags={"phase": "s"})

        assert result.transport_failed
        assert result.status_code is None
        assert result.error_type == "network_connect"
        snapshot = await metrics.snapshot()
        assert snapshot.value("transport_errors", {"error_type": "network_connect", "operation": "search_ram"}) == 1
        assert snapshot.select("http_req_failed").rate == 1.0
        assert "sim.request_transport_error" in capturing_logger.events("debug")
