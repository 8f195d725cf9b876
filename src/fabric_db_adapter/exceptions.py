"""Fabric adapter exceptions."""

from __future__ import annotations


class FabricAdapterError(Exception):
    """Root exception for the Fabric database adapter."""


class ConfigurationError(FabricAdapterError):
    """Raised when required adapter settings (collection, credentials) are missing."""


class NotFoundError(FabricAdapterError):
    """Base class for missing collections and documents."""


class CollectionNotFoundError(NotFoundError):
    """Raised when a collection is missing and may not be created."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Collection '{name}' doesn't exist!")


class DocumentNotFoundError(NotFoundError):
    """Raised when a point lookup finds no document."""

    def __init__(self, collection: str, key: str) -> None:
        self.collection = collection
        self.key = key
        super().__init__(f"Document {key!r} not found in collection '{collection}'")


class TransportError(FabricAdapterError):
    """Raised when the database could not be reached or rejected a request.

    ``status_code`` is the HTTP status when the server answered, else ``None``.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class DecodeError(FabricAdapterError):
    """Raised when a change-feed frame cannot be decoded.

    Carries the unparsed frame for diagnostics.
    """

    def __init__(self, message: str, raw: str | bytes | None = None) -> None:
        self.raw = raw
        super().__init__(message)


class InvalidQueryError(FabricAdapterError):
    """Raised when a filter, sort or predicate cannot be turned into a query."""


class ExhaustedCursorError(FabricAdapterError):
    """Raised when ``next()`` is called on a cursor with no remaining rows."""
