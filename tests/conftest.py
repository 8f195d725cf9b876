"""Test configuration: an in-memory Fabric client for adapter tests.

The fake understands exactly the query shapes FabricQueryBuilder emits for
equality filters, id lists, batched inserts and update/remove-many, which is
enough to exercise the adapter end to end without a server.
"""

from __future__ import annotations

import re
import uuid
from typing import Any

import pytest

from fabric_db_adapter import FabricAdapter
from fabric_db_adapter.exceptions import DocumentNotFoundError, ExhaustedCursorError
from fabric_db_adapter.ports import ChangeHandlers

pytest_plugins = ["pytest_asyncio"]

_EQUALITY_RE = re.compile(r"FILTER row\.([\w.]+) == @(\w+)")
_IDS_RE = re.compile(r"FILTER row\._id IN @ids")


class ListCursor:
    """Cursor over an in-memory list (test stand-in for HttpCursor)."""

    def __init__(self, rows: list[Any], count: int | None = None) -> None:
        self._rows = list(rows)
        self._count = count

    @property
    def count(self) -> int | None:
        return self._count

    def has_next(self) -> bool:
        return bool(self._rows)

    async def next(self) -> Any:
        if not self._rows:
            raise ExhaustedCursorError("Cursor has no more results")
        return self._rows.pop(0)

    async def all(self) -> list[Any]:
        rows, self._rows = self._rows, []
        return rows


class InMemoryCollection:
    def __init__(self, name: str) -> None:
        self._name = name
        self.created = False
        self.docs: dict[str, dict[str, Any]] = {}
        self.handlers: ChangeHandlers | None = None
        self.locator: str | None = None
        self.subscription_name: str | None = None
        self.stream_closed = 0

    @property
    def name(self) -> str:
        return self._name

    async def exists(self) -> bool:
        return self.created

    async def create(self) -> None:
        self.created = True

    def _key(self, handle: str) -> str:
        return handle.rsplit("/", 1)[-1]

    async def document(self, key: str) -> dict[str, Any]:
        doc = self.docs.get(self._key(key))
        if doc is None:
            raise DocumentNotFoundError(self._name, key)
        return dict(doc)

    def put(self, document: dict[str, Any]) -> dict[str, Any]:
        key = uuid.uuid4().hex[:12]
        doc = {**document, "_key": key, "_id": f"{self._name}/{key}", "_rev": "1"}
        self.docs[key] = doc
        return dict(doc)

    async def save(self, document: Any, *, return_new: bool = True) -> dict[str, Any]:
        doc = self.put(dict(document))
        meta = {k: doc[k] for k in ("_id", "_key", "_rev")}
        if return_new:
            meta["new"] = doc
        return meta

    async def update(self, key: str, patch: Any, *, return_new: bool = True) -> Any:
        doc = self.docs.get(self._key(key))
        if doc is None:
            return None
        doc.update(patch)
        meta = {k: doc[k] for k in ("_id", "_key", "_rev")}
        if return_new:
            meta["new"] = dict(doc)
        return meta

    async def remove(self, key: str) -> dict[str, Any]:
        doc = self.docs.pop(self._key(key), None)
        if doc is None:
            raise DocumentNotFoundError(self._name, key)
        return {k: doc[k] for k in ("_id", "_key", "_rev")}

    async def truncate(self) -> None:
        self.docs.clear()

    async def on_change(
        self, handlers: ChangeHandlers, locator: str, subscription_name: str
    ) -> None:
        self.handlers = handlers
        self.locator = locator
        self.subscription_name = subscription_name
        handlers.on_open()

    async def close_on_change_connection(self) -> None:
        self.stream_closed += 1
        if self.handlers is not None:
            self.handlers.on_close()
            self.handlers = None


class InMemoryFabricClient:
    def __init__(self) -> None:
        self.collections: dict[str, InMemoryCollection] = {}
        self.logged_in_as: str | None = None
        self.tenant: str | None = None
        self.fabric: str | None = None
        self.closed = False
        self.queries: list[tuple[str, dict[str, Any], dict[str, Any]]] = []

    async def login(self, email: str, password: str) -> None:
        self.logged_in_as = email

    def use_tenant(self, name: str) -> None:
        self.tenant = name

    def use_fabric(self, name: str) -> None:
        self.fabric = name

    def collection(self, name: str) -> InMemoryCollection:
        return self.collections.setdefault(name, InMemoryCollection(name))

    async def list_collections(self, exclude_system: bool = True) -> list[dict[str, Any]]:
        return [{"name": n} for n, c in self.collections.items() if c.created]

    async def close(self) -> None:
        self.closed = True

    def _matching(self, coll: InMemoryCollection, text: str, binds: dict[str, Any]) -> list:
        rows = list(coll.docs.values())
        for field, param in _EQUALITY_RE.findall(text):
            rows = [r for r in rows if r.get(field) == binds[param]]
        if _IDS_RE.search(text):
            rows = [r for r in rows if r["_id"] in binds["ids"]]
        return rows

    async def query(
        self,
        text: str,
        bind_vars: dict[str, Any] | None = None,
        *,
        count: bool = False,
        batch_size: int | None = None,
    ) -> ListCursor:
        binds = dict(bind_vars or {})
        self.queries.append((text, binds, {"count": count, "batch_size": batch_size}))
        coll = self.collection(binds.get("@collection", ""))
        if "INSERT doc INTO" in text:
            rows = [coll.put(dict(d)) for d in binds["documents"]]
        elif "UPDATE row WITH" in text:
            matched = self._matching(coll, text, binds)
            for row in matched:
                row.update(binds["patch"])
            rows = [len(matched)]
        elif "REMOVE row IN" in text:
            matched = self._matching(coll, text, binds)
            for row in matched:
                coll.docs.pop(row["_key"])
            rows = [len(matched)]
        else:
            rows = [dict(r) for r in self._matching(coll, text, binds)]
        return ListCursor(rows, count=len(rows) if count else None)


@pytest.fixture
def fake_client() -> InMemoryFabricClient:
    return InMemoryFabricClient()


@pytest.fixture
def adapter_opts() -> dict[str, Any]:
    return {
        "url": "https://gdn1.macrometa.io",
        "email": "FABRIC_EMAIL",
        "password": "FABRIC_PASS",
    }


@pytest.fixture
async def adapter(fake_client, adapter_opts):
    """Connected adapter over the in-memory client, collection ``posts``."""
    adapter = FabricAdapter(adapter_opts, client_factory=lambda _config: fake_client)
    adapter.init(collection="posts")
    await adapter.connect()
    yield adapter
    await adapter.disconnect()
