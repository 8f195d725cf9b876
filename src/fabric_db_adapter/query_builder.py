"""C8QL query builder for adapter filters."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .exceptions import InvalidQueryError
from .filters import (
    EqualityPredicate,
    FilterSpec,
    Predicate,
    RawPredicate,
    SortDirection,
    normalize_predicate,
)

logger = logging.getLogger(__name__)

ROW = "row"
COLLECTION_BIND = "@collection"

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


@dataclass(frozen=True)
class BuiltQuery:
    """Query text plus its bind parameters."""

    text: str
    bind_vars: dict[str, Any] = field(default_factory=dict)


def _field_ref(name: str) -> str:
    """Return ``row.<name>`` for a validated attribute path."""
    if not isinstance(name, str) or not _FIELD_RE.match(name):
        raise InvalidQueryError(f"Invalid field name {name!r}")
    return f"{ROW}.{name}"


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class _Bindings:
    """Allocates bind parameter names for one query."""

    def __init__(self, collection: str) -> None:
        if not collection:
            raise InvalidQueryError("Collection name is required")
        self.values: dict[str, Any] = {COLLECTION_BIND: collection}
        self._counter = 0

    def add(self, value: Any, name: str | None = None) -> str:
        if name is None:
            name = f"value{self._counter}"
            self._counter += 1
        self.values[name] = value
        return f"@{name}"


class FabricQueryBuilder:
    """Builds C8QL queries with bound parameters.

    Every value travels as a bind parameter; field names are validated against
    an attribute-path pattern. Only :class:`RawPredicate` expressions are
    emitted verbatim.
    """

    def build_query(
        self, collection: str, spec: FilterSpec | Mapping[str, Any] | None = None
    ) -> BuiltQuery:
        """Build the find/count query for ``collection``.

        Clause order: iteration, search, predicate, sort, limit, projection.
        When both ``search`` and ``query`` are given they are AND-combined:
        a row must match the search term and the predicate.
        """
        binds = _Bindings(collection)
        spec = FilterSpec.from_params(spec)
        if spec is None:
            return BuiltQuery(f"FOR {ROW} IN @{COLLECTION_BIND} RETURN {ROW}", binds.values)

        lines = [f"FOR {ROW} IN @{COLLECTION_BIND}"]
        lines.extend(self.build_search(spec, binds))
        lines.extend(self.build_filter(spec.predicate, binds))
        sort_clause = self.build_sort(spec.sort_keys)
        if sort_clause:
            lines.append(sort_clause)
        limit_clause = self.build_limit(spec.limit, spec.offset, binds)
        if limit_clause:
            lines.append(limit_clause)
        lines.append(self.build_return(spec.fields, binds))
        return BuiltQuery("\n".join(lines), binds.values)

    def build_search(self, spec: FilterSpec, binds: _Bindings) -> list[str]:
        """OR-combined case-insensitive substring match over ``search_fields``."""
        if not isinstance(spec.search, str) or spec.search == "":
            return []
        if not spec.search_fields:
            logger.warning(
                "Search term %r given without searchFields; search is ignored",
                spec.search,
            )
            return []
        param = binds.add(f"%{_escape_like(spec.search)}%", "search")
        conditions = [f"LIKE({_field_ref(f)}, {param}, true)" for f in spec.search_fields]
        return ["FILTER " + " OR ".join(conditions)]

    def build_filter(self, predicate: Any, binds: _Bindings) -> list[str]:
        """One FILTER line per equality entry, or the raw expression."""
        predicate = normalize_predicate(predicate)
        if predicate is None:
            return []
        if isinstance(predicate, EqualityPredicate):
            return [
                f"FILTER {_field_ref(name)} == {binds.add(value)}"
                for name, value in predicate.values.items()
            ]
        if isinstance(predicate, RawPredicate):
            return [f"FILTER {predicate.expression}"]
        raise InvalidQueryError(f"Unsupported predicate {predicate!r}")

    def build_sort(self, sort_keys: Sequence[tuple[str, SortDirection]] | None) -> str | None:
        """``SORT row.a, row.b DESC``; ``None`` when there is no sort."""
        if not sort_keys:
            return None
        parts = []
        for name, direction in sort_keys:
            ref = _field_ref(name)
            parts.append(f"{ref} DESC" if direction is SortDirection.DESC else ref)
        return "SORT " + ", ".join(parts)

    def build_limit(self, limit: int | None, offset: int | None, binds: _Bindings) -> str | None:
        """``LIMIT @offset, @limit`` for a positive limit; offset alone is ignored."""
        if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
            return None
        start = offset if isinstance(offset, int) and offset > 0 else 0
        return f"LIMIT {binds.add(start, 'offset')}, {binds.add(limit, 'limit')}"

    def build_return(self, fields: Sequence[str] | None, binds: _Bindings) -> str:
        """Full row, or ``KEEP`` projection of ``fields``."""
        if not fields:
            return f"RETURN {ROW}"
        for name in fields:
            _field_ref(name)
        return f"RETURN KEEP({ROW}, {binds.add(list(fields), 'fields')})"

    def build_find_by_ids(self, collection: str, ids: Sequence[str]) -> BuiltQuery:
        binds = _Bindings(collection)
        param = binds.add(list(ids), "ids")
        text = f"FOR {ROW} IN @{COLLECTION_BIND}\nFILTER {ROW}._id IN {param}\nRETURN {ROW}"
        return BuiltQuery(text, binds.values)

    def build_insert_many(
        self, collection: str, documents: Sequence[Mapping[str, Any]]
    ) -> BuiltQuery:
        """Single batched insert returning the new documents in input order."""
        binds = _Bindings(collection)
        param = binds.add([dict(d) for d in documents], "documents")
        text = f"FOR doc IN {param}\nINSERT doc INTO @{COLLECTION_BIND}\nRETURN NEW"
        return BuiltQuery(text, binds.values)

    def build_update_many(
        self, collection: str, predicate: Predicate | Any, patch: Mapping[str, Any]
    ) -> BuiltQuery:
        """Merge ``patch`` into every matching row; returns the affected count."""
        binds = _Bindings(collection)
        filters = self.build_filter(predicate, binds)
        param = binds.add(dict(patch), "patch")
        body = [f"FOR {ROW} IN @{COLLECTION_BIND}", *filters]
        body.append(f"UPDATE {ROW} WITH {param} IN @{COLLECTION_BIND}")
        return BuiltQuery(self._count_touched(body), binds.values)

    def build_remove_many(self, collection: str, predicate: Predicate | Any) -> BuiltQuery:
        """Remove every matching row; returns the affected count."""
        binds = _Bindings(collection)
        filters = self.build_filter(predicate, binds)
        body = [f"FOR {ROW} IN @{COLLECTION_BIND}", *filters]
        body.append(f"REMOVE {ROW} IN @{COLLECTION_BIND}")
        return BuiltQuery(self._count_touched(body), binds.values)

    @staticmethod
    def _count_touched(body: list[str]) -> str:
        inner = "\n  ".join([*body, "RETURN 1"])
        return f"LET touched = (\n  {inner}\n)\nRETURN LENGTH(touched)"
