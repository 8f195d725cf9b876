"""Websocket transport for collection change streams (aiohttp)."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING

import aiohttp

from ..exceptions import TransportError

if TYPE_CHECKING:
    from ..ports import ChangeHandlers

logger = logging.getLogger(__name__)


class CollectionStream:
    """Consumes one change-stream websocket and feeds raw frames to handlers.

    Every text frame is acknowledged with its ``messageId`` after the
    ``on_message`` handler ran.
    """

    def __init__(
        self,
        url: str,
        handlers: ChangeHandlers,
        *,
        headers: dict[str, str] | None = None,
        session: aiohttp.ClientSession | None = None,
        heartbeat: float = 30.0,
    ) -> None:
        self._url = url
        self._handlers = handlers
        self._headers = headers or {}
        self._external_session = session
        self._session: aiohttp.ClientSession | None = None
        self._heartbeat = heartbeat
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task[None] | None = None

    async def open(self) -> None:
        """Connect; raises TransportError when the handshake fails."""
        self._session = self._external_session or aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(
                self._url, headers=self._headers, heartbeat=self._heartbeat
            )
        except aiohttp.ClientError as e:
            await self._close_session()
            raise TransportError(f"Change stream connection failed: {e}") from e
        logger.debug("Change stream connected to %s", self._url)
        self._handlers.on_open()
        self._task = asyncio.create_task(self._read_loop(self._ws))

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type is aiohttp.WSMsgType.TEXT:
                    self._handlers.on_message(msg.data)
                    await self._ack(ws, msg.data)
                elif msg.type is aiohttp.WSMsgType.ERROR:
                    self._handlers.on_error(
                        TransportError(f"Change stream error: {ws.exception()}")
                    )
        except (aiohttp.ClientError, ConnectionResetError) as e:
            self._handlers.on_error(TransportError(f"Change stream error: {e}"))
        finally:
            self._handlers.on_close()

    async def _ack(self, ws: aiohttp.ClientWebSocketResponse, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            return
        if isinstance(frame, dict) and frame.get("messageId"):
            await ws.send_json({"messageId": frame["messageId"]})

    async def close(self) -> None:
        """Close the websocket and wait for the reader to finish. Idempotent."""
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._task is not None:
            task, self._task = self._task, None
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._close_session()

    async def _close_session(self) -> None:
        if self._session is not None and self._external_session is None:
            await self._session.close()
        self._session = None
