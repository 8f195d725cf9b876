"""Sort and filter normalization for adapter queries.

Loose framework inputs (sort strings, ``-field`` lists, predicate mappings,
raw expression strings, ``searchFields`` strings) are turned into canonical
values here. The query builder only ever sees the canonical forms.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .exceptions import InvalidQueryError

_SORT_SEPARATOR = re.compile(r"[\s,]+")


class SortDirection(str, Enum):
    """Direction of a single sort key."""

    ASC = "ASC"
    DESC = "DESC"


SortKey = tuple[str, SortDirection]


@dataclass(frozen=True)
class EqualityPredicate:
    """Conjunction of ``field == value`` conditions, in mapping order."""

    values: Mapping[str, Any]


@dataclass(frozen=True)
class RawPredicate:
    """Boolean expression inserted verbatim into the query.

    The expression is trusted input; the caller is responsible for its safety.
    """

    expression: str


Predicate = Union[EqualityPredicate, RawPredicate]


def normalize_predicate(value: Any) -> Predicate | None:
    """Dispatch a loose predicate value to its variant.

    Mappings become :class:`EqualityPredicate`, strings :class:`RawPredicate`.
    """
    if value is None:
        return None
    if isinstance(value, (EqualityPredicate, RawPredicate)):
        return value
    if isinstance(value, Mapping):
        return EqualityPredicate(dict(value))
    if isinstance(value, str):
        if not value.strip():
            return None
        return RawPredicate(value)
    raise InvalidQueryError(
        f"Query must be a mapping or an expression string, got {type(value).__name__}"
    )


def _parse_direction(direction: Any) -> SortDirection:
    if isinstance(direction, SortDirection):
        return direction
    if isinstance(direction, bool):
        raise InvalidQueryError(f"Invalid sort direction {direction!r}")
    if direction in (1, -1):
        return SortDirection.ASC if direction == 1 else SortDirection.DESC
    if isinstance(direction, str) and direction.upper() in SortDirection.__members__:
        return SortDirection[direction.upper()]
    raise InvalidQueryError(f"Invalid sort direction {direction!r}")


def _parse_token(token: str) -> SortKey:
    if token.startswith("-"):
        name, direction = token[1:], SortDirection.DESC
    else:
        name, direction = token, SortDirection.ASC
    if not name:
        raise InvalidQueryError(f"Invalid sort field {token!r}")
    return name, direction


def normalize_sort(value: Any) -> list[SortKey] | None:
    """Canonicalize a sort spec to ``[(field, SortDirection), ...]``.

    ``"a,-b"``, ``"a -b"`` and ``["a", "-b"]`` all give
    ``[("a", ASC), ("b", DESC)]``. Input order is preserved. Returns ``None``
    when there is nothing to sort by.
    """
    if value is None:
        return None
    if isinstance(value, str):
        tokens = [t for t in _SORT_SEPARATOR.split(value) if t]
        return [_parse_token(t) for t in tokens] or None
    if isinstance(value, Mapping):
        return [(str(k), _parse_direction(v)) for k, v in value.items()] or None
    if isinstance(value, Sequence):
        result: list[SortKey] = []
        for item in value:
            if isinstance(item, str):
                result.extend(
                    _parse_token(t) for t in _SORT_SEPARATOR.split(item) if t
                )
            elif isinstance(item, tuple) and len(item) == 2:
                result.append((str(item[0]), _parse_direction(item[1])))
            else:
                raise InvalidQueryError(f"Invalid sort item {item!r}")
        return result or None
    raise InvalidQueryError(f"Invalid sort spec of type {type(value).__name__}")


def _split_fields(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(str(v) for v in value)


def _check_non_negative(name: str, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidQueryError(f"`{name}` must be a non-negative integer, got {value!r}")


@dataclass(frozen=True)
class FilterSpec:
    """
    Immutable container for the filter parameters of find/count.

    Attributes:
        query: Predicate (mapping, raw expression or variant); ``None`` = no filter.
        search: Search term matched against ``search_fields``.
        search_fields: Fields searched; a string is split on whitespace.
        sort: Sort spec, see :func:`normalize_sort`.
        limit: Maximum number of rows.
        offset: Rows to skip; ignored without ``limit``.
        fields: Projection; ``None`` returns full rows.
    """

    query: Any = None
    search: str | None = None
    search_fields: tuple[str, ...] = field(default_factory=tuple)
    sort: Any = None
    limit: int | None = None
    offset: int | None = None
    fields: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        _check_non_negative("limit", self.limit)
        _check_non_negative("offset", self.offset)
        object.__setattr__(self, "search_fields", _split_fields(self.search_fields))
        if self.fields is not None:
            object.__setattr__(self, "fields", _split_fields(self.fields))

    @property
    def predicate(self) -> Predicate | None:
        return normalize_predicate(self.query)

    @property
    def sort_keys(self) -> list[SortKey] | None:
        return normalize_sort(self.sort)

    @classmethod
    def from_params(cls, params: Mapping[str, Any] | FilterSpec | None) -> FilterSpec | None:
        """Build from the loose parameter mapping a data service passes in."""
        if params is None or isinstance(params, FilterSpec):
            return params
        search_fields = params.get("searchFields", params.get("search_fields"))
        return cls(
            query=params.get("query"),
            search=params.get("search"),
            search_fields=search_fields or (),
            sort=params.get("sort"),
            limit=params.get("limit"),
            offset=params.get("offset"),
            fields=params.get("fields"),
        )
