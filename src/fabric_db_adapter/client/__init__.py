"""Default Fabric client: REST over httpx, change streams over aiohttp."""

from __future__ import annotations

from fabric_db_adapter.client.collection import HttpCollection
from fabric_db_adapter.client.connection import C8HttpClient
from fabric_db_adapter.client.cursor import HttpCursor
from fabric_db_adapter.client.streams import CollectionStream

__all__ = [
    "C8HttpClient",
    "HttpCollection",
    "HttpCursor",
    "CollectionStream",
]
