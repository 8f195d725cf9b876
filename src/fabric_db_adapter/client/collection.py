"""HttpCollection: document operations on one collection over REST."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from ..exceptions import DocumentNotFoundError
from ..ports import ChangeHandlers, ICollectionHandle
from .streams import CollectionStream

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .connection import C8HttpClient


def document_key(handle: str) -> str:
    """Accept a ``_key`` or a full ``collection/_key`` id and return the key."""
    return handle.rsplit("/", 1)[-1]


class HttpCollection(ICollectionHandle):
    """Collection handle bound to a logged-in :class:`C8HttpClient`."""

    def __init__(self, client: C8HttpClient, name: str) -> None:
        self._client = client
        self._name = name
        self._stream: CollectionStream | None = None

    @property
    def name(self) -> str:
        return self._name

    def _path(self, suffix: str = "") -> str:
        return self._client.api_path(f"collection/{quote(self._name, safe='')}{suffix}")

    def _document_path(self, key: str | None = None) -> str:
        path = f"document/{quote(self._name, safe='')}"
        if key is not None:
            path += f"/{quote(document_key(key), safe='')}"
        return self._client.api_path(path)

    async def exists(self) -> bool:
        data = await self._client.request("GET", self._path(), allow_missing=True)
        return data is not None

    async def create(self) -> None:
        await self._client.request(
            "POST", self._client.api_path("collection"), json={"name": self._name}
        )

    async def document(self, key: str) -> dict[str, Any]:
        data = await self._client.request("GET", self._document_path(key), allow_missing=True)
        if data is None:
            raise DocumentNotFoundError(self._name, key)
        return data

    async def save(
        self, document: Mapping[str, Any], *, return_new: bool = True
    ) -> dict[str, Any]:
        return await self._client.request(
            "POST",
            self._document_path(),
            json=dict(document),
            params={"returnNew": "true" if return_new else "false"},
        )

    async def update(
        self, key: str, patch: Mapping[str, Any], *, return_new: bool = True
    ) -> dict[str, Any] | None:
        """Merge ``patch`` into the document; ``None`` when it does not exist."""
        return await self._client.request(
            "PATCH",
            self._document_path(key),
            json=dict(patch),
            params={"returnNew": "true" if return_new else "false"},
            allow_missing=True,
        )

    async def remove(self, key: str) -> dict[str, Any]:
        data = await self._client.request(
            "DELETE", self._document_path(key), allow_missing=True
        )
        if data is None:
            raise DocumentNotFoundError(self._name, key)
        return data

    async def truncate(self) -> None:
        await self._client.request("PUT", self._path("/truncate"))

    async def on_change(
        self,
        handlers: ChangeHandlers,
        locator: str,
        subscription_name: str,
    ) -> None:
        await self.close_on_change_connection()
        stream = CollectionStream(
            self._client.stream_url(locator, self._name, subscription_name),
            handlers,
            headers=self._client.auth_headers(),
        )
        await stream.open()
        self._stream = stream

    async def close_on_change_connection(self) -> None:
        if self._stream is not None:
            stream, self._stream = self._stream, None
            await stream.close()
