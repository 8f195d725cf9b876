"""Unit tests for sort and predicate normalization."""

from __future__ import annotations

import pytest

from fabric_db_adapter.exceptions import InvalidQueryError
from fabric_db_adapter.filters import (
    EqualityPredicate,
    FilterSpec,
    RawPredicate,
    SortDirection,
    normalize_predicate,
    normalize_sort,
)

ASC = SortDirection.ASC
DESC = SortDirection.DESC


def test_sort_string_and_list_are_equivalent() -> None:
    expected = [("a", ASC), ("b", DESC)]
    assert normalize_sort("a,-b") == expected
    assert normalize_sort(["a", "-b"]) == expected


def test_sort_splits_on_every_separator() -> None:
    assert normalize_sort("votes, -title  createdAt") == [
        ("votes", ASC),
        ("title", DESC),
        ("createdAt", ASC),
    ]


def test_sort_none_and_empty() -> None:
    assert normalize_sort(None) is None
    assert normalize_sort("") is None
    assert normalize_sort([]) is None


def test_sort_keeps_input_order() -> None:
    assert normalize_sort(["-z", "a"]) == [("z", DESC), ("a", ASC)]


def test_sort_accepts_pairs_and_mapping() -> None:
    assert normalize_sort([("votes", "desc"), ("title", 1)]) == [
        ("votes", DESC),
        ("title", ASC),
    ]
    assert normalize_sort({"votes": -1, "title": "asc"}) == [
        ("votes", DESC),
        ("title", ASC),
    ]


@pytest.mark.parametrize("bad", [42, ["-"], [("votes", "sideways")], [object()]])
def test_sort_rejects_invalid_input(bad) -> None:
    with pytest.raises(InvalidQueryError):
        normalize_sort(bad)


def test_predicate_dispatch() -> None:
    assert normalize_predicate(None) is None
    assert normalize_predicate({"title": "Last"}) == EqualityPredicate({"title": "Last"})
    assert normalize_predicate("row.votes > 2") == RawPredicate("row.votes > 2")
    raw = RawPredicate("true")
    assert normalize_predicate(raw) is raw


def test_predicate_rejects_other_types() -> None:
    with pytest.raises(InvalidQueryError, match="mapping or an expression"):
        normalize_predicate(["title"])


def test_filter_spec_from_params_reads_camel_case() -> None:
    spec = FilterSpec.from_params(
        {"search": "hello", "searchFields": "title content", "limit": 5}
    )
    assert spec is not None
    assert spec.search_fields == ("title", "content")
    assert spec.limit == 5
    assert spec.offset is None


def test_filter_spec_from_params_passthrough() -> None:
    spec = FilterSpec(limit=1)
    assert FilterSpec.from_params(spec) is spec
    assert FilterSpec.from_params(None) is None


@pytest.mark.parametrize("field", ["limit", "offset"])
@pytest.mark.parametrize("value", [-1, 1.5, True, "3"])
def test_filter_spec_rejects_bad_pagination(field, value) -> None:
    with pytest.raises(InvalidQueryError, match=field):
        FilterSpec(**{field: value})
