"""Adapter configuration and coercion from loose option objects."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields, replace
from typing import Any
from urllib.parse import urlparse

from .exceptions import ConfigurationError

DEFAULT_URL = "https://gdn.paas.macrometa.io"

_CAMEL_CASE_KEYS = {
    "createIfNotExist": "create_if_not_exist",
    "batchSize": "batch_size",
}


@dataclass(frozen=True)
class FabricAdapterConfig:
    """Configuration for :class:`~fabric_db_adapter.adapter.FabricAdapter`.

    Attributes:
        url: Server URL, or several URLs tried in order on login.
        email: Login email.
        password: Login password.
        collection: Name of the collection the adapter works on.
        tenant: Tenant to switch to after login (optional).
        fabric: Fabric (database) to switch to after login (optional,
            the server default is ``_system``).
        create_if_not_exist: Create the collection on connect when missing.
        timeout: Request timeout in seconds for the HTTP client.
        batch_size: Cursor batch size sent with every query (server default
            when ``None``).
        locator: Host of the region serving change streams; derived from
            ``url`` when ``None``.
    """

    url: str | tuple[str, ...] = DEFAULT_URL
    email: str | None = None
    password: str | None = None
    collection: str | None = None
    tenant: str | None = None
    fabric: str | None = None
    create_if_not_exist: bool = True
    timeout: float = 30.0
    batch_size: int | None = None
    locator: str | None = None

    @property
    def urls(self) -> tuple[str, ...]:
        """All configured URLs, trailing slashes stripped."""
        if isinstance(self.url, str):
            return (self.url.rstrip("/"),)
        return tuple(u.rstrip("/") for u in self.url)

    @property
    def change_feed_locator(self) -> str:
        """Host used for change-stream websocket connections."""
        if self.locator:
            return self.locator
        host = urlparse(self.urls[0]).hostname
        if not host:
            raise ConfigurationError(f"Cannot derive a locator from url {self.urls[0]!r}")
        return host

    def with_collection(self, collection: str | None) -> FabricAdapterConfig:
        """Return a copy with ``collection`` replaced when one is given."""
        if not collection:
            return self
        return replace(self, collection=collection)

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` if required settings are missing."""
        if not self.collection:
            raise ConfigurationError(
                "Missing `collection` definition in the adapter configuration!"
            )
        if not self.email or not self.password:
            raise ConfigurationError(
                "The `email` and `password` fields are required to connect "
                "with Macrometa Services!"
            )
        if not self.urls:
            raise ConfigurationError("At least one `url` is required")

    @classmethod
    def from_env(cls, **overrides: Any) -> FabricAdapterConfig:
        """Build a config from ``FABRIC_*`` environment variables."""
        env = os.environ
        params: dict[str, Any] = {
            "url": env.get("FABRIC_URL", DEFAULT_URL),
            "email": env.get("FABRIC_EMAIL"),
            "password": env.get("FABRIC_PASS"),
            "tenant": env.get("FABRIC_TENANT"),
            "fabric": env.get("FABRIC_NAME"),
            "collection": env.get("FABRIC_COLLECTION"),
        }
        params.update(overrides)
        return coerce_config(params)


def coerce_config(opts: Any = None) -> FabricAdapterConfig:
    """Turn the loose option forms accepted by the adapter into a config.

    Accepts ``None``, a URL string, a sequence of URLs, a mapping (snake_case
    or camelCase keys, optionally with nested ``auth: {email, password}``),
    or an existing :class:`FabricAdapterConfig`.
    """
    if opts is None:
        return FabricAdapterConfig()
    if isinstance(opts, FabricAdapterConfig):
        return opts
    if isinstance(opts, str):
        return FabricAdapterConfig(url=opts)
    if isinstance(opts, Mapping):
        return _config_from_mapping(opts)
    if isinstance(opts, Sequence):
        return FabricAdapterConfig(url=tuple(str(u) for u in opts))
    raise ConfigurationError(
        f"Unsupported adapter options of type {type(opts).__name__}"
    )


def _config_from_mapping(opts: Mapping[str, Any]) -> FabricAdapterConfig:
    known = {f.name for f in fields(FabricAdapterConfig)}
    params: dict[str, Any] = {}
    for key, value in opts.items():
        name = _CAMEL_CASE_KEYS.get(key, key)
        if name == "auth" and isinstance(value, Mapping):
            params.setdefault("email", value.get("email"))
            params.setdefault("password", value.get("password"))
        elif name == "config" and isinstance(value, (str, list, tuple)):
            # Older option shape: ``config`` holds the server URL(s).
            params.setdefault("url", value)
        elif name in known:
            if value is not None or name not in params:
                params[name] = value
        else:
            raise ConfigurationError(f"Unknown adapter option {key!r}")
    url = params.get("url")
    if url is None:
        params.pop("url", None)
    elif not isinstance(url, str):
        params["url"] = tuple(str(u) for u in url)
    if params.get("create_if_not_exist") is None:
        params.pop("create_if_not_exist", None)
    if params.get("timeout") is None:
        params.pop("timeout", None)
    return FabricAdapterConfig(**params)
