"""Tests for route precedence and the HTTP handlers."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import pytest
from conftest import async_wait_until, write_config
from fastapi.testclient import TestClient

from editpulse.app import create_app, create_service
from editpulse.constants import STREAM_HEADERS


def _runtime(tmp_path: Path):
    return create_service(write_config(tmp_path / "config.yaml", {"server": {"port": 0}}))


async def _started_headless(tmp_path: Path):
    runtime = _runtime(tmp_path)
    runtime.scheduler.bind_server(None)  # headless
    await runtime.scheduler.start()
    return runtime


class _OpenStream:
    """Drives one GET through the ASGI app and keeps the response open."""

    def __init__(self, app, path: str) -> None:
        self.messages: asyncio.Queue[dict] = asyncio.Queue()
        self.disconnect = asyncio.Event()
        self._request_sent = False
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"testserver")],
            "client": ("127.0.0.1", 50123),
            "server": ("testserver", 80),
        }
        self.task = asyncio.create_task(app(scope, self._receive, self._send))

    async def _receive(self) -> dict:
        if not self._request_sent:
            self._request_sent = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await self.disconnect.wait()
        return {"type": "http.disconnect"}

    async def _send(self, message: dict) -> None:
        await self.messages.put(message)

    async def next_message(self) -> dict:
        return await asyncio.wait_for(self.messages.get(), timeout=5.0)

    async def start_message(self) -> dict:
        message = await self.next_message()
        assert message["type"] == "http.response.start"
        return message

    async def close(self) -> None:
        self.disconnect.set()
        await asyncio.wait_for(self.task, timeout=5.0)


def _headers(start: dict) -> dict[str, str]:
    return {k.decode().lower(): v.decode() for k, v in start["headers"]}


def test_health_reports_scheduler_state(tmp_path: Path) -> None:
    runtime = _runtime(tmp_path)
    client = TestClient(create_app(runtime))
    resp = client.get("/api/health")
    assert resp.headers["content-type"].startswith("application/json")
    body = resp.json()
    assert body["status"] == "ok"
    assert body["state"] == "stopped"
    assert body["subscribers"] == 0
    assert body["counters"] == {"text": 0.0, "file": 0.0, "save": 0.0}
    assert body["last_measurement"] is None


@pytest.mark.asyncio
async def test_api_routes_take_precedence_over_stream(tmp_path: Path) -> None:
    runtime = await _started_headless(tmp_path)
    app = create_app(runtime)
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/api/health")
            assert resp.status_code == 200
            assert resp.json()["state"] == "running"
        assert len(runtime.scheduler.registry) == 0

        stream = _OpenStream(app, "/x")
        start = await stream.start_message()
        assert _headers(start)["content-type"].startswith("text/event-stream")
        assert len(runtime.scheduler.registry) == 1
        await stream.close()
    finally:
        await runtime.scheduler.stop()


@pytest.mark.asyncio
async def test_fire_hook_records_event(tmp_path: Path) -> None:
    runtime = await _started_headless(tmp_path)
    transport = httpx.ASGITransport(app=create_app(runtime))
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post("/api/hooks/after-save")
            assert resp.json() == {"hook": "after-save", "fired": 1}
            assert runtime.scheduler.ledger.counters()["save"] == 1.0
            resp = await client.post("/api/hooks/no-such-hook")
            assert resp.json()["fired"] == 0
    finally:
        await runtime.scheduler.stop()


def test_publish_diagnostics(tmp_path: Path) -> None:
    runtime = _runtime(tmp_path)
    client = TestClient(create_app(runtime))
    resp = client.put("/api/diagnostics", json={"severities": ["warning", "error"]})
    assert resp.status_code == 200
    assert resp.json() == {"count": 2}
    assert runtime.diagnostics.current_severities() == ["warning", "error"]
    assert runtime.scheduler.classifier.classify_source(runtime.diagnostics) == 1.0


def test_publish_diagnostics_rejects_bad_body(tmp_path: Path) -> None:
    client = TestClient(create_app(_runtime(tmp_path)))
    assert client.put("/api/diagnostics", json={"severities": "error"}).status_code == 422


def test_non_get_on_stream_path_is_not_streamed(tmp_path: Path) -> None:
    runtime = _runtime(tmp_path)
    client = TestClient(create_app(runtime))
    assert client.post("/anything").status_code == 405
    assert len(runtime.scheduler.registry) == 0


def test_stream_refused_while_stopped(tmp_path: Path) -> None:
    runtime = _runtime(tmp_path)
    client = TestClient(create_app(runtime))
    assert client.get("/any/path").status_code == 503
    assert len(runtime.scheduler.registry) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/docs", "/redoc", "/openapi.json"])
async def test_documentation_paths_stream_too(tmp_path: Path, path: str) -> None:
    runtime = await _started_headless(tmp_path)
    try:
        stream = _OpenStream(create_app(runtime), path)
        start = await stream.start_message()
        assert start["status"] == 200
        assert _headers(start)["content-type"].startswith("text/event-stream")
        await stream.close()
    finally:
        await runtime.scheduler.stop()


@pytest.mark.asyncio
async def test_stream_endpoint_registers_subscriber(tmp_path: Path) -> None:
    runtime = await _started_headless(tmp_path)
    try:
        stream = _OpenStream(create_app(runtime), "/any/path")
        start = await stream.start_message()
        assert start["status"] == 200
        headers = _headers(start)
        for name, value in STREAM_HEADERS.items():
            assert headers[name.lower()].startswith(value)
        registry = runtime.scheduler.registry
        assert registry.peers() == ["127.0.0.1:50123"]

        await registry.broadcast('data: {"activity":0.0,"hazard":0.0,"time":5}\n\n')
        body = await stream.next_message()
        frame = body["body"].decode()
        assert json.loads(frame[len("data: ") :])["time"] == 5
        await stream.close()
    finally:
        await runtime.scheduler.stop()


@pytest.mark.asyncio
async def test_stop_ends_open_streams(tmp_path: Path) -> None:
    runtime = await _started_headless(tmp_path)
    stream = _OpenStream(create_app(runtime), "/")
    await stream.start_message()
    await runtime.scheduler.stop()
    await asyncio.wait_for(stream.task, timeout=5.0)
    assert len(runtime.scheduler.registry) == 0


@pytest.mark.asyncio
async def test_disconnected_peer_is_dropped_on_next_write(tmp_path: Path) -> None:
    runtime = await _started_headless(tmp_path)
    registry = runtime.scheduler.registry
    try:
        stream = _OpenStream(create_app(runtime), "/")
        await stream.start_message()
        assert len(registry) == 1

        await stream.close()
        # The registry only learns about the disconnect on its next write.
        assert len(registry) == 1
        assert await registry.broadcast("data: {}\n\n") == 0
        assert await async_wait_until(lambda: len(registry) == 0)
    finally:
        await runtime.scheduler.stop()
