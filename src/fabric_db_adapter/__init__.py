"""Fabric (Macrometa C8) document database adapter.

Translates a uniform CRUD/query interface (find, count, insert, update, remove,
raw query, change subscription) into C8QL queries with bound parameters.
"""

from __future__ import annotations

from .adapter import FabricAdapter
from .change_feed import (
    ChangeEvent,
    ChangeFeedSubscription,
    ChangeNotification,
    ChangeSignal,
    SubscriptionState,
    decode_frame,
)
from .client import C8HttpClient
from .config import FabricAdapterConfig, coerce_config
from .cursor import CursorExecutor
from .exceptions import (
    CollectionNotFoundError,
    ConfigurationError,
    DecodeError,
    DocumentNotFoundError,
    ExhaustedCursorError,
    FabricAdapterError,
    InvalidQueryError,
    NotFoundError,
    TransportError,
)
from .filters import (
    EqualityPredicate,
    FilterSpec,
    RawPredicate,
    SortDirection,
    normalize_predicate,
    normalize_sort,
)
from .ports import ChangeHandlers, ICollectionHandle, IFabricClient, IFabricCursor
from .query_builder import BuiltQuery, FabricQueryBuilder

__all__ = [
    # Adapter
    "FabricAdapter",
    "FabricAdapterConfig",
    "coerce_config",
    # Query building
    "FilterSpec",
    "EqualityPredicate",
    "RawPredicate",
    "SortDirection",
    "normalize_predicate",
    "normalize_sort",
    "FabricQueryBuilder",
    "BuiltQuery",
    "CursorExecutor",
    # Change feed
    "ChangeEvent",
    "ChangeFeedSubscription",
    "ChangeNotification",
    "ChangeSignal",
    "SubscriptionState",
    "decode_frame",
    # Client
    "C8HttpClient",
    "ChangeHandlers",
    "ICollectionHandle",
    "IFabricClient",
    "IFabricCursor",
    # Exceptions
    "FabricAdapterError",
    "ConfigurationError",
    "NotFoundError",
    "CollectionNotFoundError",
    "DocumentNotFoundError",
    "TransportError",
    "DecodeError",
    "InvalidQueryError",
    "ExhaustedCursorError",
]
