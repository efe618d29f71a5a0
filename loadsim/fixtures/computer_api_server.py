from __future__ import annotations

import http.server
import json
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import parse_qs, unquote, urlsplit

import httpx

from loadsim.logger import Logger, session_logger


@dataclass
class _Record:
    id: int
    name: str
    price: Any
    created_at: str
    sort_key: tuple[datetime, int]
    description: dict[str, Any]
    visible_at: float

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "createdAt": self.created_at,
            "description": json.dumps(self.description, sort_keys=True),
        }


@dataclass
class ComputerStore:
    """In-memory primary with a simulated replica.

    Writes land on the primary immediately; reads that go to the replica
    (pagination, searches) only see records once ``replica_lag_seconds`` has
    passed since the write.
    """

    replica_lag_seconds: float = 0.0
    unique_names: bool = True
    duplicate_status: int = 409
    clock: Callable[[], float] = time.monotonic
    _records: dict[str, _Record] = field(default_factory=dict)
    _next_id: int = 1
    _last_created: datetime | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def insert(self, payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        name = payload.get("name")
        if not isinstance(name, str) or not name:
            return 400, {"error": "name is required"}

        description = {k: v for k, v in payload.items() if k not in ("name", "price")}
        with self._lock:
            if self.unique_names and name in self._records:
                return self.duplicate_status, {"error": "duplicate key value violates unique constraint", "name": name}

            created = datetime.now(timezone.utc)
            if self._last_created is not None and created <= self._last_created:
                created = self._last_created
            self._last_created = created
            record_id = self._next_id
            self._next_id += 1

            record = _Record(
                id=record_id,
                name=name,
                price=payload.get("price"),
                created_at=created.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
                sort_key=(created, record_id),
                description=description,
                visible_at=self.clock() + self.replica_lag_seconds,
            )
            # Without the unique constraint later winners shadow earlier ones by name.
            key = name if self.unique_names else f"{name}#{record_id}"
            self._records[key] = record
            return 201, record.to_json()

    def delete(self, name: str) -> int:
        with self._lock:
            keys = [k for k, r in self._records.items() if r.name == name]
            for key in keys:
                del self._records[key]
        return 204 if keys else 404

    def page(self, after: tuple[datetime, int] | None, limit: int) -> list[dict[str, Any]]:
        visible = self._replica_view()
        if after is not None:
            visible = [r for r in visible if r.sort_key > after]
        return [r.to_json() for r in visible[:limit]]

    def search_gpu(self, term: str) -> list[dict[str, Any]]:
        needle = term.lower()
        return [
            r.to_json()
            for r in self._replica_view()
            if needle in str((r.description.get("placa_video") or {}).get("modelo", "")).lower()
        ]

    def search_ram(self, capacity: int) -> list[dict[str, Any]]:
        return [
            r.to_json()
            for r in self._replica_view()
            if (r.description.get("memoria_ram") or {}).get("capacidade_total_gb") == capacity
        ]

    def _replica_view(self) -> list[_Record]:
        now = self.clock()
        with self._lock:
            records = [r for r in self._records.values() if r.visible_at <= now]
        records.sort(key=lambda r: r.sort_key)
        return records


def _parse_cursor(query: dict[str, list[str]]) -> tuple[datetime, int] | None:
    created = query.get("createdAt", [None])[0]
    raw_id = query.get("id", [None])[0]
    if created is None and raw_id is None:
        return None
    if created is None or raw_id is None:
        raise ValueError("createdAt and id must be given together")
    text = created[:-1] + "+00:00" if created.endswith("Z") else created
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed, int(raw_id)


def handle_request(store: ComputerStore, method: str, target: str, body: bytes = b"") -> tuple[int, Any]:
    """Route one request against ``store``; returns (status, json body or None)."""
    parts = urlsplit(target)
    segments = [unquote(s) for s in parts.path.split("/") if s]
    query = parse_qs(parts.query)

    if method == "POST" and segments == ["computer"]:
        try:
            payload = json.loads(body or b"null")
        except json.JSONDecodeError:
            return 400, {"error": "invalid json"}
        if not isinstance(payload, dict):
            return 400, {"error": "body must be an object"}
        return store.insert(payload)

    if method == "GET" and segments == ["computer", "pagination"]:
        try:
            limit = int(query.get("limit", ["20"])[0])
            after = _parse_cursor(query)
        except ValueError as exc:
            return 400, {"error": str(exc)}
        return 200, store.page(after, max(1, limit))

    if method == "GET" and len(segments) == 4 and segments[:2] == ["computer", "search"]:
        if segments[2] == "gpu":
            return 200, store.search_gpu(segments[3])
        if segments[2] == "ram":
            try:
                capacity = int(segments[3])
            except ValueError:
                return 400, {"error": "capacity must be an integer"}
            return 200, store.search_ram(capacity)

    if method == "DELETE" and len(segments) == 2 and segments[0] == "computer":
        return store.delete(segments[1]), None

    return 404, {"error": "not found"}


def mock_transport(store: ComputerStore) -> httpx.MockTransport:
    """Serve ``store`` through httpx without opening a socket."""

    def _handler(request: httpx.Request) -> httpx.Response:
        status, body = handle_request(store, request.method, str(request.url.raw_path, "ascii"), request.content)
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    return httpx.MockTransport(_handler)


class ComputerApiFixtureServer:
    """Threaded stand-in for the computer API, for CI-safe simulation runs.

    Serves the same routes as the real service on an ephemeral port:

    - POST   /computer
    - GET    /computer/pagination?limit=&createdAt=&id=
    - GET    /computer/search/gpu/{term}
    - GET    /computer/search/ram/{capacity}
    - DELETE /computer/{name}

    Env defaults: LOADSIM_FIXTURE_HOST (bind host, default 127.0.0.1).
    """

    def __init__(
        self,
        *,
        port: int = 0,
        replica_lag_seconds: float = 0.0,
        unique_names: bool = True,
        duplicate_status: int = 409,
        logger: Logger | None = None,
    ) -> None:
        self._logger = logger or session_logger
        self._host = os.environ.get("LOADSIM_FIXTURE_HOST", "127.0.0.1")
        self.port = port
        self.store = ComputerStore(
            replica_lag_seconds=replica_lag_seconds,
            unique_names=unique_names,
            duplicate_status=duplicate_status,
        )
        self._server: http.server.ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        store = self.store

        class Handler(http.server.BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def log_message(self, format, *args):  # noqa: A002, ARG002
                # Keep output deterministic and avoid noisy logs.
                pass

            def _dispatch(self) -> None:
                length = int(self.headers.get("Content-Length") or 0)
                raw = self.rfile.read(length) if length else b""
                status, body = handle_request(store, self.command, self.path, raw)

                data = b"" if body is None else json.dumps(body).encode("utf-8")
                self.send_response(status)
                if body is not None:
                    self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                if data:
                    self.wfile.write(data)

            do_GET = _dispatch  # noqa: N815
            do_POST = _dispatch  # noqa: N815
            do_DELETE = _dispatch  # noqa: N815

        class ReusableHTTPServer(http.server.ThreadingHTTPServer):
            allow_reuse_address = True
            daemon_threads = True

        self._server = ReusableHTTPServer((self._host, self.port), Handler)
        self.port = int(self._server.server_port)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        self._logger.info(
            "sim.fixture_server_started",
            host=self._host,
            port=self.port,
            replica_lag_seconds=self.store.replica_lag_seconds,
            unique_names=self.store.unique_names,
        )

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

        self._logger.info("sim.fixture_server_stopped", port=self.port, records=len(self.store))

    @property
    def base_url(self) -> str:
        return f"http://{self._host}:{self.port}"

    def __enter__(self) -> "ComputerApiFixtureServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
        return None
