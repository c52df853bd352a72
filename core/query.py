"""
core/query.py -- Generic query-feature layer.

Turns untyped request query parameters into a QuerySpec: a filtered, sorted,
field-limited, paginated query *description*. Nothing here touches the
database. docstore.store.Collection.find() executes the description.

Usage:
    params = parse_query_params(request.query_params.multi_items())
    spec = QueryFeatures(params).filter().sort().limit_fields().paginate().spec
    docs = tours.find(spec)

The four steps are chainable and are always applied by callers in the order
filter -> sort -> limit_fields -> paginate. Each step only writes its own part
of the QuerySpec, so the result does not depend on the order.

Entity-agnostic: field names are not checked here. Unknown fields and operator
keys pass straight through and the store decides what to do with them.

Layer rule: core/ is the kernel. No imports from api/, auth/, or docstore/.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from core.errors import ValidationError

# Keys that control the query rather than filter it.
RESERVED_PARAMS = frozenset({"page", "sort", "limit", "fields"})

COMPARISON_OPERATORS = frozenset({"gte", "gt", "lte", "lt"})

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 100

# Newest first. The store adds the primary key as a final tie-break so the
# ordering is total and pagination is stable.
DEFAULT_SORT = "-created_at"

# Internal revision counter, hidden unless explicitly requested.
VERSION_FIELD = "version"

_BRACKET_KEY = re.compile(r"^([^\[\]]+)\[([^\[\]]+)\]$")
_LIST_SEPARATOR = re.compile(r"[,\s]+")


# ---------------------------------------------------------------------------
# QuerySpec
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Comparison:
    """One filter term: field <op> value.

    op is "eq" for bare values, "in" for repeated values, or the raw operator
    suffix from the query string ("gte", "gt", "lte", "lt", or anything else
    the client sent -- the store rejects what it does not support).
    """

    field: str
    op: str
    value: Any


@dataclass(frozen=True)
class SortKey:
    field: str
    descending: bool = False


@dataclass
class QuerySpec:
    """Parsed filter/sort/projection/pagination description of one list request."""

    filters: list[Comparison] = field(default_factory=list)
    sort: list[SortKey] = field(default_factory=list)
    include: list[str] = field(default_factory=list)  # empty = all fields
    exclude: list[str] = field(default_factory=list)
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_PAGE_SIZE

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


# ---------------------------------------------------------------------------
# Query-string parsing
# ---------------------------------------------------------------------------


def parse_query_params(pairs: Iterable[tuple[str, str]]) -> dict[str, Any]:
    """Fold raw (key, value) query pairs into the nested shape QueryFeatures reads.

    price[gte]=500           -> {"price": {"gte": "500"}}
    difficulty=easy          -> {"difficulty": "easy"}
    duration=5&duration=9    -> {"duration": ["5", "9"]}
    sort=price&sort=-name    -> {"sort": "-name"}
    price[gte]=400&price=500 -> {"price": {"gte": "400", "eq": "500"}}

    Repeated reserved keys keep the last value so a polluted query string
    cannot smuggle a list into sort/fields/page/limit.
    """
    params: dict[str, Any] = {}
    for key, value in pairs:
        match = _BRACKET_KEY.match(key)
        if match:
            name, op = match.groups()
            params[name] = _nested(params.get(name))
            params[name][op] = value
        elif key in RESERVED_PARAMS:
            params[key] = value
        elif isinstance(params.get(key), dict):
            _add_equality(params[key], value)
        elif key in params:
            existing = params[key]
            params[key] = (existing if isinstance(existing, list) else [existing]) + [value]
        else:
            params[key] = value
    return params


def _nested(existing: Any) -> dict[str, Any]:
    """Operator mapping for a field, keeping any bare value seen before as "eq" or "in"."""
    if isinstance(existing, dict):
        return existing
    if isinstance(existing, list):
        return {"in": existing}
    if existing is not None:
        return {"eq": existing}
    return {}


def _add_equality(nested: dict[str, Any], value: str) -> None:
    if "in" in nested:
        nested["in"].append(value)
    elif "eq" in nested:
        nested["in"] = [nested.pop("eq"), value]
    else:
        nested["eq"] = value


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    return None


def _as_int(value: Any, default: int) -> int:
    """Parse an int the lenient way: anything non-numeric falls back to default.

    Zero and negative numbers are returned unchanged.
    """
    if value is None or isinstance(value, (dict, list)):
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def _split_list(raw: str) -> list[str]:
    return [part for part in _LIST_SEPARATOR.split(raw.strip()) if part]


def _sort_keys(parts: list[str]) -> list[SortKey]:
    keys = []
    for part in parts:
        if part.startswith("-"):
            if len(part) > 1:
                keys.append(SortKey(part[1:], descending=True))
        else:
            keys.append(SortKey(part))
    return keys


def _comparisons(key: str, value: Any) -> list[Comparison]:
    if isinstance(value, Mapping):
        return [Comparison(key, str(op), operand) for op, operand in value.items()]
    if isinstance(value, (list, tuple)):
        return [Comparison(key, "in", list(value))]
    return [Comparison(key, "eq", value)]


# ---------------------------------------------------------------------------
# QueryFeatures
# ---------------------------------------------------------------------------


class QueryFeatures:
    """Builder that applies request parameters to a QuerySpec.

    base_filters are equality filters the caller always wants applied, such as
    the parent tour id for /tours/{tour_id}/reviews. They are not subject to
    the request parameters and cannot be removed by them.
    """

    def __init__(
        self,
        params: Mapping[str, Any],
        base_filters: Mapping[str, Any] | None = None,
        default_limit: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.params = dict(params)
        self.default_limit = default_limit
        self.spec = QuerySpec(
            filters=[Comparison(k, "eq", v) for k, v in (base_filters or {}).items()],
            limit=default_limit,
        )

    def filter(self) -> QueryFeatures:
        """Turn every non-reserved parameter into one or more Comparisons."""
        for key, value in self.params.items():
            if key in RESERVED_PARAMS:
                continue
            self.spec.filters.extend(_comparisons(key, value))
        return self

    def sort(self) -> QueryFeatures:
        """Parse "sort" as comma-separated fields, "-" prefix meaning descending.

        Later fields break ties of earlier ones. Nothing usable (absent, blank,
        or only bare "-") falls back to DEFAULT_SORT.
        """
        raw = _as_text(self.params.get("sort"))
        keys = _sort_keys(_split_list(raw)) if raw else []
        self.spec.sort = keys or _sort_keys([DEFAULT_SORT])
        return self

    def limit_fields(self) -> QueryFeatures:
        """Parse "fields" into an include list or an exclude list, never both."""
        raw = _as_text(self.params.get("fields"))
        parts = _split_list(raw) if raw else []
        include = [p for p in parts if not p.startswith("-")]
        exclude = [p[1:] for p in parts if p.startswith("-") and len(p) > 1]
        if include and exclude:
            raise ValidationError(
                "Cannot mix included and excluded fields in 'fields'.",
                context={"fields": raw},
            )
        if include:
            self.spec.include = include
            self.spec.exclude = []
        else:
            self.spec.include = []
            self.spec.exclude = exclude if VERSION_FIELD in exclude else [*exclude, VERSION_FIELD]
        return self

    def paginate(self) -> QueryFeatures:
        """skip = (page - 1) * limit, take = limit. No sanity clamping here."""
        self.spec.page = _as_int(self.params.get("page"), DEFAULT_PAGE)
        self.spec.limit = _as_int(self.params.get("limit"), self.default_limit)
        return self

    def build(self) -> QuerySpec:
        """Apply all four steps in the standard order and return the QuerySpec."""
        return self.filter().sort().limit_fields().paginate().spec
