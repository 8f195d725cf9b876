"""Outbound ports: the database client contract the adapter consumes."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


def _noop(*_args: Any) -> None:
    return None


@dataclass(frozen=True)
class ChangeHandlers:
    """Callbacks a collection handle invokes for its change stream.

    ``on_message`` receives the raw frame text; decoding is the subscriber's job.
    """

    on_message: Callable[[str], None]
    on_open: Callable[[], None] = _noop
    on_error: Callable[[BaseException], None] = _noop
    on_close: Callable[[], None] = _noop


@runtime_checkable
class IFabricCursor(Protocol):
    """Handle over a query's pending result rows."""

    @property
    def count(self) -> int | None:
        """Total row count; only set when requested at query time."""
        ...

    def has_next(self) -> bool: ...

    async def next(self) -> Any:
        """Return the next row; raises ExhaustedCursorError when drained."""
        ...

    async def all(self) -> list[Any]:
        """Drain and return every remaining row."""
        ...


@runtime_checkable
class ICollectionHandle(Protocol):
    """Document-level operations on a single collection."""

    @property
    def name(self) -> str: ...

    async def exists(self) -> bool: ...

    async def create(self) -> None: ...

    async def document(self, key: str) -> dict[str, Any]:
        """Point lookup; raises DocumentNotFoundError when missing."""
        ...

    async def save(
        self, document: Mapping[str, Any], *, return_new: bool = True
    ) -> dict[str, Any]: ...

    async def update(
        self, key: str, patch: Mapping[str, Any], *, return_new: bool = True
    ) -> dict[str, Any] | None: ...

    async def remove(self, key: str) -> dict[str, Any]: ...

    async def truncate(self) -> None: ...

    async def on_change(
        self,
        handlers: ChangeHandlers,
        locator: str,
        subscription_name: str,
    ) -> None:
        """Open the change stream; returns once the connection is open."""
        ...

    async def close_on_change_connection(self) -> None: ...


@runtime_checkable
class IFabricClient(Protocol):
    """
    Framework-agnostic port over a Fabric database client.

    The default implementation is :class:`fabric_db_adapter.client.C8HttpClient`.
    """

    async def login(self, email: str, password: str) -> None: ...

    def use_tenant(self, name: str) -> None: ...

    def use_fabric(self, name: str) -> None: ...

    def collection(self, name: str) -> ICollectionHandle: ...

    async def query(
        self,
        text: str,
        bind_vars: Mapping[str, Any] | None = None,
        *,
        count: bool = False,
        batch_size: int | None = None,
    ) -> IFabricCursor: ...

    async def list_collections(self, exclude_system: bool = True) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...
