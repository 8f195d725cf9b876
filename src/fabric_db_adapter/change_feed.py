"""Change-feed decoding and subscriptions.

A collection's change stream delivers JSON frames whose ``payload`` field is a
base64-encoded JSON document. :class:`ChangeFeedSubscription` turns those frames
into a stream of :class:`ChangeNotification` items that can be consumed with
``async for``; :func:`forward_changes` adapts that stream to an
``(error, event)`` callback.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import inspect
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import DecodeError
from .ports import ChangeHandlers

if TYPE_CHECKING:
    from .ports import ICollectionHandle

logger = logging.getLogger(__name__)

ChangeCallback = Callable[..., Any]


class ChangeFeedFrame(BaseModel):
    """Frame as delivered by the stream consumer websocket."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    message_id: str | None = Field(default=None, alias="messageId")
    payload: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)
    publish_time: str | None = Field(default=None, alias="publishTime")


class ChangeEvent(BaseModel):
    """A decoded insert/update/delete notification for one document."""

    model_config = ConfigDict(frozen=True)

    deleted: bool = False
    key: str | None = None
    payload: dict[str, Any] | None = None


def decode_frame(raw: str | bytes) -> ChangeEvent | None:
    """Decode one frame; ``None`` when the frame carries no payload.

    Raises:
        DecodeError: the frame or its payload is malformed.
    """
    try:
        frame = ChangeFeedFrame.model_validate_json(raw)
    except ValidationError as e:
        raise DecodeError(f"Malformed change-feed frame: {e}", raw) from e
    if not frame.payload:
        return None
    try:
        data = json.loads(base64.b64decode(frame.payload, validate=True))
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Malformed change-feed payload: {e}", raw) from e
    if not isinstance(data, dict):
        raise DecodeError("Change-feed payload must be a JSON object", raw)
    props = frame.properties
    key = props.get("_key") or data.get("_key")
    return ChangeEvent(
        deleted=str(props.get("op", "")).lower() == "delete",
        key=str(key) if key is not None else None,
        payload=data,
    )


class ChangeSignal(str, Enum):
    OPENED = "opened"
    EVENT = "event"
    ERROR = "error"
    CLOSED = "closed"


class SubscriptionState(str, Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


@dataclass(frozen=True)
class ChangeNotification:
    """One item of a subscription stream.

    ``event`` is set for EVENT, ``error`` for ERROR (``raw`` too when the error
    is a decode failure).
    """

    signal: ChangeSignal
    event: ChangeEvent | None = None
    error: BaseException | None = None
    raw: str | bytes | None = None


class ChangeFeedSubscription:
    """Cancellable subscription to a collection's change stream.

    No automatic reconnect; the caller owns retry policy.
    """

    def __init__(
        self,
        collection: ICollectionHandle,
        *,
        locator: str,
        subscription_name: str,
    ) -> None:
        self._collection = collection
        self._locator = locator
        self.subscription_name = subscription_name
        self.state = SubscriptionState.IDLE
        self._queue: asyncio.Queue[ChangeNotification] = asyncio.Queue()
        self._close_emitted = False
        self._released = False
        self._finished = False

    async def open(self) -> ChangeFeedSubscription:
        if self.state is not SubscriptionState.IDLE:
            raise RuntimeError(f"Subscription already {self.state.value}")
        self.state = SubscriptionState.SUBSCRIBING
        handlers = ChangeHandlers(
            on_message=self._on_message,
            on_open=self._on_open,
            on_error=self._on_error,
            on_close=self._on_close,
        )
        try:
            await self._collection.on_change(handlers, self._locator, self.subscription_name)
        except Exception:
            self.state = SubscriptionState.ERRORED
            raise
        if self.state is SubscriptionState.SUBSCRIBING:
            self._on_open()
        return self

    async def close(self) -> None:
        """Close the underlying stream connection. Idempotent.

        The connection is released even when the server already closed the
        stream.
        """
        if self._released:
            return
        self._released = True
        if self.state is not SubscriptionState.IDLE:
            await self._collection.close_on_change_connection()
        self._on_close()

    @property
    def closed(self) -> bool:
        return self._close_emitted

    def _on_open(self) -> None:
        if self.state is SubscriptionState.SUBSCRIBING:
            self.state = SubscriptionState.OPEN
            logger.info("Change stream '%s' opened", self.subscription_name)
            self._queue.put_nowait(ChangeNotification(ChangeSignal.OPENED))

    def _on_message(self, raw: str) -> None:
        try:
            event = decode_frame(raw)
        except DecodeError as e:
            self._queue.put_nowait(ChangeNotification(ChangeSignal.ERROR, error=e, raw=raw))
            return
        if event is None:
            return
        self._queue.put_nowait(ChangeNotification(ChangeSignal.EVENT, event=event))

    def _on_error(self, error: BaseException) -> None:
        logger.warning("Change stream '%s' failed: %s", self.subscription_name, error)
        if not self._close_emitted:
            self.state = SubscriptionState.ERRORED
        self._queue.put_nowait(ChangeNotification(ChangeSignal.ERROR, error=error))

    def _on_close(self) -> None:
        if self._close_emitted:
            return
        self._close_emitted = True
        if self.state is not SubscriptionState.ERRORED:
            self.state = SubscriptionState.CLOSED
        logger.info("Change stream '%s' closed", self.subscription_name)
        self._queue.put_nowait(ChangeNotification(ChangeSignal.CLOSED))

    def __aiter__(self) -> ChangeFeedSubscription:
        return self

    async def __anext__(self) -> ChangeNotification:
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item.signal is ChangeSignal.CLOSED:
            self._finished = True
        return item


async def _invoke(callback: ChangeCallback, *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


async def forward_changes(
    subscription: ChangeFeedSubscription, callback: ChangeCallback
) -> None:
    """Feed a subscription into a node-style ``callback(error, value)``.

    Events arrive as ``callback(None, event)``, decode failures as
    ``callback(error, raw_frame)``, transport failures as ``callback(error)``.
    Returns when the subscription closes.
    """
    async for item in subscription:
        try:
            if item.signal is ChangeSignal.EVENT:
                await _invoke(callback, None, item.event)
            elif item.signal is ChangeSignal.ERROR and isinstance(item.error, DecodeError):
                await _invoke(callback, item.error, item.raw)
            elif item.signal is ChangeSignal.ERROR:
                await _invoke(callback, item.error)
        except Exception:
            logger.exception(
                "Change callback failed for subscription '%s'",
                subscription.subscription_name,
            )
