"""C8HttpClient: httpx implementation of the Fabric client port."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import quote

import httpx

from ..config import DEFAULT_URL
from ..exceptions import TransportError
from ..ports import IFabricClient
from .collection import HttpCollection
from .cursor import HttpCursor

logger = logging.getLogger(__name__)

DEFAULT_FABRIC = "_system"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, Mapping):
        return str(body.get("errorMessage") or body.get("message") or body)
    return str(body)


class C8HttpClient(IFabricClient):
    """Fabric REST client with JWT login, tenant and fabric selection.

    With several URLs, ``login`` sticks to the first server that accepts a
    connection.
    """

    def __init__(
        self,
        url: str | Sequence[str] = DEFAULT_URL,
        *,
        timeout: float = 30.0,
        **client_kwargs: Any,
    ) -> None:
        self._urls = (url,) if isinstance(url, str) else tuple(url)
        self._timeout = timeout
        self._client_kwargs = client_kwargs
        self._http: httpx.AsyncClient | None = None
        self._base_url: str | None = None
        self._token: str | None = None
        self._tenant: str | None = None
        self._login_tenant: str | None = None
        self._fabric = DEFAULT_FABRIC

    @property
    def base_url(self) -> str:
        if self._base_url is None:
            raise TransportError("Not connected; call login() first")
        return self._base_url

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def tenant(self) -> str | None:
        return self._tenant or self._login_tenant

    @property
    def fabric(self) -> str:
        return self._fabric

    async def login(self, email: str, password: str) -> None:
        """Authenticate and keep the JWT for subsequent requests."""
        last_error: Exception | None = None
        for url in self._urls:
            http = httpx.AsyncClient(
                base_url=url.rstrip("/"), timeout=self._timeout, **self._client_kwargs
            )
            try:
                response = await http.post(
                    "/_open/auth", json={"email": email, "password": password}
                )
            except httpx.ConnectError as e:
                await http.aclose()
                logger.warning("Cannot connect to %s: %s", url, e)
                last_error = e
                continue
            except httpx.HTTPError as e:
                await http.aclose()
                raise TransportError(f"Login request failed: {e}") from e
            if response.is_error:
                await http.aclose()
                raise TransportError(
                    f"Login failed: {_error_message(response)}",
                    status_code=response.status_code,
                )
            body = response.json()
            await self._replace_http(http)
            self._base_url = url.rstrip("/")
            self._token = body.get("jwt")
            self._login_tenant = body.get("tenant")
            return
        raise TransportError(f"No reachable server among {list(self._urls)}: {last_error}")

    async def _replace_http(self, http: httpx.AsyncClient) -> None:
        if self._http is not None:
            await self._http.aclose()
        self._http = http

    def use_tenant(self, name: str) -> None:
        self._tenant = name

    def use_fabric(self, name: str) -> None:
        self._fabric = name

    def api_path(self, suffix: str) -> str:
        """Path of a fabric-scoped API endpoint."""
        prefix = f"/_tenant/{quote(self._tenant, safe='')}" if self._tenant else ""
        return f"{prefix}/_fabric/{quote(self._fabric, safe='')}/_api/{suffix}"

    def stream_url(self, locator: str, collection: str, subscription_name: str) -> str:
        """Websocket URL of a collection's change-stream consumer."""
        tenant = self.tenant
        if not tenant:
            raise TransportError("Tenant unknown; call login() first")
        return (
            f"wss://{locator}/_ws/ws/v2/consumer/persistent/"
            f"{quote(tenant, safe='')}/c8local.{quote(self._fabric, safe='')}/"
            f"{quote(collection, safe='')}/{quote(subscription_name, safe='')}"
        )

    def auth_headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"bearer {self._token}"}

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> Any:
        """Send an authenticated request and return the decoded JSON body.

        Returns ``None`` for a 404 when ``allow_missing`` is set.
        """
        if self._http is None:
            raise TransportError("Not connected; call login() first")
        try:
            response = await self._http.request(
                method, path, json=json, params=params, headers=self.auth_headers()
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        if allow_missing and response.status_code == 404:
            return None
        if response.is_error:
            raise TransportError(
                f"{method} {path} failed: {_error_message(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    def collection(self, name: str) -> HttpCollection:
        return HttpCollection(self, name)

    async def query(
        self,
        text: str,
        bind_vars: Mapping[str, Any] | None = None,
        *,
        count: bool = False,
        batch_size: int | None = None,
    ) -> HttpCursor:
        body: dict[str, Any] = {"query": text, "bindVars": dict(bind_vars or {})}
        if count:
            body["count"] = True
        if batch_size:
            body["batchSize"] = batch_size
        data = await self.request("POST", self.api_path("cursor"), json=body)
        return HttpCursor(self, data or {})

    async def fetch_batch(self, cursor_id: str) -> dict[str, Any]:
        """Fetch the next batch of an open server-side cursor."""
        data = await self.request(
            "PUT", self.api_path(f"cursor/{quote(cursor_id, safe='')}")
        )
        return data or {}

    async def list_collections(self, exclude_system: bool = True) -> list[dict[str, Any]]:
        data = await self.request(
            "GET",
            self.api_path("collection"),
            params={"excludeSystem": "true" if exclude_system else "false"},
        )
        return list((data or {}).get("result", []))

    async def close(self) -> None:
        """Close the HTTP client. Idempotent."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        self._token = None
