from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Collection, Mapping
from urllib.parse import quote

import httpx

from loadsim.core import metric_names as m
from loadsim.core.cursor import Cursor, pagination_params
from loadsim.core.metrics import MetricsCollector
from loadsim.logger import Logger, session_logger

COMPUTER_PATH = "/computer"

_DEFAULT_EXPECTED = frozenset(range(200, 400))


@dataclass(frozen=True)
class CallResult:
    """One request/response cycle against the target API.

    ``status_code`` is None when the request never produced a response; in
    that case ``error_type`` carries the transport classification.
    """

    operation: str
    status_code: int | None
    body: bytes
    duration_ms: float
    error_type: str | None = None

    @property
    def transport_failed(self) -> bool:
        return self.status_code is None

    @property
    def size_bytes(self) -> int:
        return len(self.body)

    def json(self) -> Any:
        """Decode the body as JSON; raises ValueError on malformed content."""
        return json.loads(self.body.decode("utf-8"))


class ComputerApiClient:
    """Async HTTP collaborator for the computer API.

    One pooled ``httpx.AsyncClient`` is shared by every worker. Each call
    records ``http_req_duration`` and ``http_req_failed`` and never raises for
    transport problems: those come back as a CallResult without status.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        metrics: MetricsCollector | None = None,
        logger: Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_connections: int = 1000,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._metrics = metrics
        self._logger = logger or session_logger
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
            limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
            headers={
                "User-Agent": "computer-loadsim/0.1",
                "Accept": "application/json",
            },
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ComputerApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def create_computer(
        self,
        payload: Mapping[str, Any],
        *,
        tags: Mapping[str, str] | None = None,
        timeout: float | None = None,
        operation: str = "insert",
        expected: Collection[int] = _DEFAULT_EXPECTED,
    ) -> CallResult:
        return await self._call(
            "POST",
            COMPUTER_PATH,
            operation=operation,
            tags=tags,
            timeout=timeout,
            json_body=dict(payload),
            expected=expected,
        )

    async def paginate(
        self,
        cursor: Cursor | None,
        limit: int,
        *,
        tags: Mapping[str, str] | None = None,
        timeout: float | None = None,
        operation: str = "pagination",
    ) -> CallResult:
        return await self._call(
            "GET",
            f"{COMPUTER_PATH}/pagination",
            operation=operation,
            tags=tags,
            timeout=timeout,
            params=pagination_params(cursor, limit),
        )

    async def search_gpu(
        self,
        term: str,
        *,
        tags: Mapping[str, str] | None = None,
        timeout: float | None = None,
        operation: str = "search_gpu",
    ) -> CallResult:
        return await self._call(
            "GET",
            f"{COMPUTER_PATH}/search/gpu/{quote(term, safe='')}",
            operation=operation,
            tags=tags,
            timeout=timeout,
        )

    async def search_ram(
        self,
        capacity: int,
        *,
        tags: Mapping[str, str] | None = None,
        timeout: float | None = None,
        operation: str = "search_ram",
    ) -> CallResult:
        return await self._call(
            "GET",
            f"{COMPUTER_PATH}/search/ram/{int(capacity)}",
            operation=operation,
            tags=tags,
            timeout=timeout,
        )

    async def delete_computer(
        self,
        name: str,
        *,
        tags: Mapping[str, str] | None = None,
        timeout: float | None = None,
        operation: str = "delete",
    ) -> CallResult:
        # 404 is an idempotent outcome for deletes, not a failed request.
        return await self._call(
            "DELETE",
            f"{COMPUTER_PATH}/{quote(name, safe='')}",
            operation=operation,
            tags=tags,
            timeout=timeout,
            expected=frozenset({200, 204, 404}),
        )

    async def _call(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        tags: Mapping[str, str] | None,
        timeout: float | None,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        expected: Collection[int] = _DEFAULT_EXPECTED,
    ) -> CallResult:
        request_tags = dict(tags or {})
        request_tags["operation"] = operation
        kwargs: dict[str, Any] = {}
        if params is not None:
            kwargs["params"] = params
        if json_body is not None:
            kwargs["json"] = json_body
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout)

        start = time.monotonic()
        try:
            response = await self._http.request(method, path, **kwargs)
            result = CallResult(
                operation=operation,
                status_code=response.status_code,
                body=response.content,
                duration_ms=(time.monotonic() - start) * 1000,
            )
        except httpx.HTTPError as exc:
            result = CallResult(
                operation=operation,
                status_code=None,
                body=b"",
                duration_ms=(time.monotonic() - start) * 1000,
                error_type=classify_exception(exc),
            )
            self._logger.debug(
                "sim.request_transport_error",
                operation=operation,
                path=path,
                error_type=result.error_type,
                error=str(exc),
            )

        failed = result.status_code is None or result.status_code not in expected
        if self._metrics is not None:
            await self._metrics.add_trend(m.HTTP_REQ_DURATION, result.duration_ms, request_tags)
            await self._metrics.add_rate(m.HTTP_REQ_FAILED, failed, request_tags)
            if result.error_type is not None:
                await self._metrics.add_counter(
                    m.TRANSPORT_ERRORS,
                    1,
                    {**request_tags, "error_type": result.error_type},
                )

        self._logger.debug(
            "sim.request_done",
            operation=operation,
            method=method,
            path=path,
            status_code=result.status_code,
            duration_ms=round(result.duration_ms, 2),
        )
        return result


# ---------------------------------------------------------------------------
# Helpers: error classification
# ---------------------------------------------------------------------------

def classify_http_error(status_code: int | None) -> str | None:
    """Map an HTTP status code to a canonical error_type, or None if success."""
    if status_code is None:
        return "no_response"
    if 200 <= status_code < 400:
        return None
    if status_code == 404:
        return "not_found"
    if status_code == 409:
        return "conflict"
    if status_code == 422:
        return "unprocessable"
    if status_code == 429:
        return "rate_limited"
    if 400 <= status_code < 500:
        return "client_error"
    if 500 <= status_code < 600:
        return "server_error"
    return f"http_{status_code}"


def classify_exception(exc: BaseException) -> str:
    """Map a network-level exception to a canonical error_type."""
    if isinstance(exc, httpx.TimeoutException):
        return "network_timeout"
    if isinstance(exc, httpx.ConnectError):
        return "network_connect"
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.LocalProtocolError)):
        return "network_protocol"
    if isinstance(exc, httpx.HTTPError):
        return "network_error"
    return type(exc).__name__
