"""HttpCursor: batch-wise cursor over the cursor REST API."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Any

from ..exceptions import ExhaustedCursorError
from ..ports import IFabricCursor

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .connection import C8HttpClient


class HttpCursor(IFabricCursor):
    """Buffers the current batch and fetches further batches on demand.

    Server-side cursors are left to expire; they are never deleted explicitly.
    """

    def __init__(self, client: C8HttpClient, response: Mapping[str, Any]) -> None:
        self._client = client
        self._buffer: deque[Any] = deque(response.get("result") or [])
        self._has_more = bool(response.get("hasMore"))
        self._id: str | None = response.get("id")
        self._count: int | None = response.get("count")

    @property
    def count(self) -> int | None:
        return self._count

    def has_next(self) -> bool:
        return bool(self._buffer) or self._has_more

    async def next(self) -> Any:
        if not self._buffer and self._has_more:
            await self._fetch_more()
        if not self._buffer:
            raise ExhaustedCursorError("Cursor has no more results")
        return self._buffer.popleft()

    async def all(self) -> list[Any]:
        rows = list(self._buffer)
        self._buffer.clear()
        while self._has_more:
            await self._fetch_more()
            rows.extend(self._buffer)
            self._buffer.clear()
        return rows

    async def _fetch_more(self) -> None:
        if self._id is None:
            self._has_more = False
            return
        data = await self._client.fetch_batch(self._id)
        self._buffer.extend(data.get("result") or [])
        self._has_more = bool(data.get("hasMore"))
