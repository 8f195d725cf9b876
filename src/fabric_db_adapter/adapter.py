"""FabricAdapter: CRUD façade and lifecycle over a Fabric collection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from types import TracebackType
from typing import TYPE_CHECKING, Any

from .change_feed import ChangeCallback, ChangeFeedSubscription, forward_changes
from .client import C8HttpClient
from .config import FabricAdapterConfig, coerce_config
from .cursor import CursorExecutor
from .exceptions import CollectionNotFoundError, ConfigurationError
from .filters import FilterSpec, SortKey, normalize_predicate, normalize_sort
from .query_builder import BuiltQuery, FabricQueryBuilder

if TYPE_CHECKING:
    from .ports import ICollectionHandle, IFabricClient, IFabricCursor

logger = logging.getLogger(__name__)

ClientFactory = Callable[[FabricAdapterConfig], "IFabricClient"]


def _default_client_factory(config: FabricAdapterConfig) -> IFabricClient:
    return C8HttpClient(config.urls, timeout=config.timeout)


class FabricAdapter:
    """Data-service adapter for a single Fabric collection.

    Usage::

        adapter = FabricAdapter({"url": url, "email": email, "password": pw})
        adapter.init(collection="posts")
        async with adapter:
            await adapter.insert({"title": "Hello"})
            posts = await adapter.find({"sort": "-votes", "limit": 10})

    Operations are independent request/response round trips; the adapter
    holds no mutable state besides the collection handle opened on connect.
    """

    def __init__(
        self,
        opts: Any = None,
        *,
        client_factory: ClientFactory | None = None,
        query_builder: FabricQueryBuilder | None = None,
    ) -> None:
        self.config = coerce_config(opts)
        self._client_factory = client_factory or _default_client_factory
        self._query_builder = query_builder or FabricQueryBuilder()
        self._client: IFabricClient | None = None
        self._collection: ICollectionHandle | None = None
        self._executor: CursorExecutor | None = None
        self._subscription: ChangeFeedSubscription | None = None
        self._forward_task: asyncio.Task[None] | None = None

    # -- lifecycle -------------------------------------------------------

    def init(self, collection: str | None = None) -> None:
        """Bind the collection name and validate the configuration.

        Raises:
            ConfigurationError: collection name or credentials are missing.
        """
        self.config = self.config.with_collection(collection)
        self.config.validate()

    async def connect(self) -> None:
        """Log in and open (or create) the configured collection."""
        self.config.validate()
        collection = self.config.collection
        if not collection:
            raise ConfigurationError(
                "Missing `collection` definition in the adapter configuration!"
            )
        if self._client is not None:
            return
        self._client = self._client_factory(self.config)
        self._executor = CursorExecutor(self._client, batch_size=self.config.batch_size)
        try:
            await self.login(self.config.email or "", self.config.password or "")
            self._collection = await self.open_collection(
                collection, self.config.create_if_not_exist
            )
        except Exception:
            await self.disconnect()
            raise
        logger.info("Fabric c8 connection has been established.")

    async def disconnect(self) -> None:
        """Close subscriptions and the client. No-op when not connected."""
        await self.unsubscribe_from_changes()
        client, self._client = self._client, None
        self._collection = None
        self._executor = None
        if client is not None:
            await client.close()

    async def __aenter__(self) -> FabricAdapter:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    async def login(self, email: str, password: str) -> None:
        """Log in, then switch tenant and fabric when configured."""
        client = self._require_client()
        logger.info("Logging in with '%s'...", email)
        await client.login(email, password)
        logger.info("Logged in.")

        if self.config.tenant:
            logger.info("Switch tenant to '%s'", self.config.tenant)
            client.use_tenant(self.config.tenant)

        if self.config.fabric:
            logger.info("Switch Fabric to '%s'", self.config.fabric)
            client.use_fabric(self.config.fabric)

    async def open_collection(
        self, name: str, create_if_not_exist: bool = True
    ) -> ICollectionHandle:
        """Open a collection, creating it when missing and allowed.

        Raises:
            CollectionNotFoundError: missing and ``create_if_not_exist`` is False.
        """
        client = self._require_client()
        logger.info("Open '%s' collection...", name)
        collection = client.collection(name)
        if not await collection.exists():
            if not create_if_not_exist:
                raise CollectionNotFoundError(name)
            logger.info("Create '%s' collection...", name)
            await collection.create()
        logger.info("Collection '%s' opened.", name)
        return collection

    def _require_client(self) -> IFabricClient:
        if self._client is None:
            raise ConfigurationError("Adapter is not connected; call connect() first")
        return self._client

    @property
    def collection(self) -> ICollectionHandle:
        if self._collection is None:
            raise ConfigurationError("Adapter is not connected; call connect() first")
        return self._collection

    @property
    def executor(self) -> CursorExecutor:
        if self._executor is None:
            raise ConfigurationError("Adapter is not connected; call connect() first")
        return self._executor

    # -- queries ---------------------------------------------------------

    async def create_cursor(
        self, filters: FilterSpec | Mapping[str, Any] | None = None, *, count: bool = False
    ) -> IFabricCursor:
        """Build the query for ``filters`` and open a cursor over it.

        Available filters: ``query``, ``search``, ``searchFields``, ``sort``,
        ``limit``, ``offset``, ``fields``.
        """
        query = self._query_builder.build_query(self.collection.name, filters)
        return await self.executor.execute(query, count=count)

    def transform_sort(self, sort: Any) -> list[SortKey] | None:
        return normalize_sort(sort)

    async def find(self, filters: FilterSpec | Mapping[str, Any] | None = None) -> list[Any]:
        """Find all documents matching ``filters``."""
        cursor = await self.create_cursor(filters)
        return await cursor.all()

    async def find_one(self, query: Any = None) -> Any | None:
        """First document matching ``query``, or ``None``."""
        cursor = await self.create_cursor(FilterSpec(query=query))
        if cursor.has_next():
            return await cursor.next()
        return None

    async def find_by_id(self, key: str) -> dict[str, Any]:
        """Point lookup by key or id; raises DocumentNotFoundError when absent."""
        return await self.collection.document(key)

    async def find_by_ids(self, ids: Sequence[str]) -> list[Any]:
        """Documents whose ``_id`` is in ``ids``; order is not guaranteed."""
        if not ids:
            return []
        query = self._query_builder.build_find_by_ids(self.collection.name, ids)
        cursor = await self.executor.execute(query)
        return await cursor.all()

    async def count(self, filters: FilterSpec | Mapping[str, Any] | None = None) -> int:
        """Number of documents matching ``filters``."""
        cursor = await self.create_cursor(filters, count=True)
        return cursor.count or 0

    async def raw_query(
        self,
        text: str,
        bind_vars: Mapping[str, Any] | None = None,
        opts: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        """Run a caller-written query and drain its results.

        ``opts`` may carry ``count`` and ``batchSize``.
        """
        opts = opts or {}
        cursor = await self.executor.execute(
            text,
            bind_vars,
            count=bool(opts.get("count", False)),
            batch_size=opts.get("batchSize", opts.get("batch_size")),
        )
        return await cursor.all()

    # -- writes ----------------------------------------------------------

    async def insert(self, entity: Mapping[str, Any]) -> dict[str, Any]:
        """Insert one document and return it with server-assigned ``_id``/``_key``."""
        res = await self.collection.save(entity, return_new=True)
        return res["new"]

    async def insert_many(self, entities: Sequence[Mapping[str, Any]]) -> list[Any]:
        """Insert all documents in a single query; results follow input order."""
        query = self._query_builder.build_insert_many(self.collection.name, entities)
        cursor = await self.executor.execute(query)
        return await cursor.all()

    async def update_by_id(self, id_: str, update: Mapping[str, Any]) -> dict[str, Any] | None:
        """Merge ``update`` into one document and return the new version.

        Returns whatever the client yields when nothing was updated (``None``).
        """
        res = await self.collection.update(id_, update, return_new=True)
        if not res:
            return res
        return res.get("new", res)

    async def update_many(self, query: Any, update: Mapping[str, Any]) -> int:
        """Merge ``update`` into every document matching ``query``; returns the count."""
        built = self._query_builder.build_update_many(
            self.collection.name, normalize_predicate(query), update
        )
        return await self._affected(built)

    async def remove_by_id(self, id_: str) -> dict[str, Any]:
        """Remove one document; returns the server acknowledgment (``_id``, ``_key``)."""
        return await self.collection.remove(id_)

    async def remove_many(self, query: Any) -> int:
        """Remove every document matching ``query``; returns the count."""
        built = self._query_builder.build_remove_many(
            self.collection.name, normalize_predicate(query)
        )
        return await self._affected(built)

    async def clear(self) -> int:
        """Truncate the collection. Always returns 0."""
        await self.collection.truncate()
        return 0

    async def _affected(self, query: BuiltQuery) -> int:
        cursor = await self.executor.execute(query)
        rows = await cursor.all()
        return int(rows[0]) if rows else 0

    def entity_to_object(self, entity: Mapping[str, Any]) -> dict[str, Any]:
        """Plain ``dict`` copy of a document for the data service."""
        return dict(entity)

    # -- change feed -----------------------------------------------------

    async def changes(self, subscription_name: str | None = None) -> ChangeFeedSubscription:
        """Open a change-feed subscription to iterate with ``async for``."""
        collection = self.collection
        subscription = ChangeFeedSubscription(
            collection,
            locator=self.config.change_feed_locator,
            subscription_name=subscription_name or f"{collection.name}-subscription",
        )
        return await subscription.open()

    async def subscribe_to_changes(
        self, callback: ChangeCallback, subscription_name: str | None = None
    ) -> ChangeFeedSubscription:
        """Forward change events to ``callback(error, event)``.

        Replaces an existing subscription. No automatic reconnect.
        """
        await self.unsubscribe_from_changes()
        self._subscription = await self.changes(subscription_name)
        self._forward_task = asyncio.create_task(
            forward_changes(self._subscription, callback)
        )
        return self._subscription

    async def unsubscribe_from_changes(self) -> None:
        """Close the change subscription. Idempotent."""
        subscription, self._subscription = self._subscription, None
        task, self._forward_task = self._forward_task, None
        if subscription is not None:
            await subscription.close()
        if task is not None:
            await task
