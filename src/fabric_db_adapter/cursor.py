"""Cursor executor: sends built or raw queries to the database client."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .query_builder import BuiltQuery

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .ports import IFabricClient, IFabricCursor

logger = logging.getLogger(__name__)


class CursorExecutor:
    """Runs queries through an :class:`IFabricClient` and returns its cursor.

    No retry: client errors propagate unchanged.
    """

    def __init__(self, client: IFabricClient, *, batch_size: int | None = None) -> None:
        self._client = client
        self._batch_size = batch_size

    async def execute(
        self,
        query: BuiltQuery | str,
        bind_vars: Mapping[str, Any] | None = None,
        *,
        count: bool = False,
        batch_size: int | None = None,
    ) -> IFabricCursor:
        """Execute ``query``; explicit ``bind_vars`` extend a built query's own."""
        if isinstance(query, BuiltQuery):
            text = query.text
            params = {**query.bind_vars, **(bind_vars or {})}
        else:
            text = query
            params = dict(bind_vars or {})
        logger.debug("Executing query: %s (bind vars: %s)", text, sorted(params))
        return await self._client.query(
            text,
            params,
            count=count,
            batch_size=batch_size or self._batch_size,
        )
