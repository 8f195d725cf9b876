"""Tests for the aiohttp change-stream transport against a local websocket server."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest
from aiohttp import WSMsgType, test_utils, web

from fabric_db_adapter.client.streams import CollectionStream
from fabric_db_adapter.exceptions import TransportError
from fabric_db_adapter.ports import ChangeHandlers

FRAME = json.dumps({"messageId": "m-1", "payload": "e30="})


class Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []
        self.closed = asyncio.Event()

    def handlers(self) -> ChangeHandlers:
        return ChangeHandlers(
            on_message=lambda raw: self.events.append(("message", raw)),
            on_open=lambda: self.events.append(("open", None)),
            on_error=lambda err: self.events.append(("error", err)),
            on_close=self._on_close,
        )

    def _on_close(self) -> None:
        self.events.append(("close", None))
        self.closed.set()


@pytest.fixture
async def ws_server():
    acks: list[dict] = []
    headers: list[str | None] = []

    async def handler(request: web.Request) -> web.WebSocketResponse:
        headers.append(request.headers.get("Authorization"))
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        await ws.send_str(FRAME)
        msg = await ws.receive()
        if msg.type is WSMsgType.TEXT:
            acks.append(json.loads(msg.data))
        await ws.close()
        return ws

    app = web.Application()
    app.router.add_get("/stream", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield SimpleNamespace(url=server.make_url, acks=acks, auth_headers=headers)
    await server.close()


async def test_frames_are_delivered_and_acked(ws_server) -> None:
    recorder = Recorder()
    stream = CollectionStream(
        str(ws_server.url("/stream")),
        recorder.handlers(),
        headers={"Authorization": "bearer token-1"},
    )
    await stream.open()
    await asyncio.wait_for(recorder.closed.wait(), timeout=5)
    await stream.close()
    await stream.close()

    assert recorder.events == [("open", None), ("message", FRAME), ("close", None)]
    assert ws_server.acks == [{"messageId": "m-1"}]
    assert ws_server.auth_headers == ["bearer token-1"]


async def test_failed_handshake_raises_transport_error(ws_server) -> None:
    recorder = Recorder()
    stream = CollectionStream(str(ws_server.url("/missing")), recorder.handlers())
    with pytest.raises(TransportError, match="Change stream connection failed"):
        await stream.open()
    assert recorder.events == []


class ResettingSocket:
    """Websocket stand-in whose ack fails with a connection reset."""

    def __init__(self, frames: list[str]) -> None:
        self._frames = frames
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self._frames:
            yield SimpleNamespace(type=WSMsgType.TEXT, data=frame)

    async def send_json(self, data) -> None:
        raise ConnectionResetError("Cannot write to closing transport")

    async def close(self) -> None:
        self.closed = True


async def test_connection_reset_on_ack_is_reported_not_raised() -> None:
    recorder = Recorder()
    stream = CollectionStream("ws://unused", recorder.handlers())
    ws = ResettingSocket([FRAME])
    stream._ws = ws
    stream._task = asyncio.create_task(stream._read_loop(ws))
    await asyncio.wait_for(recorder.closed.wait(), timeout=5)

    await stream.close()

    assert ws.closed is True
    kinds = [kind for kind, _ in recorder.events]
    assert kinds == ["message", "error", "close"]
    error = recorder.events[1][1]
    assert isinstance(error, TransportError)
    assert "Cannot write to closing transport" in str(error)
