"""Cache key construction for the receipt dashboard.

Keys are small frozen values rather than strings so that lookups are
structural: two list queries are the same entry exactly when their
normalised parameters are equal, no matter how the caller assembled
them or what characters a user typed into a filter.

``serialize_key`` exists for logs only and must never be used as a
lookup key.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from fisboard.models.enums import Resource
from fisboard.models.schemas import QueryParams


@dataclass(frozen=True)
class ListKey:
    params: QueryParams
    resource: Resource = field(default=Resource.LIST, init=False)


@dataclass(frozen=True)
class StatsKey:
    resource: Resource = field(default=Resource.STATS, init=False)


@dataclass(frozen=True)
class DetailKey:
    receipt_id: str
    resource: Resource = field(default=Resource.DETAIL, init=False)


QueryKey = Union[ListKey, StatsKey, DetailKey]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def normalize_params(params: QueryParams | Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Drop empty strings, ``None`` and ``NaN`` and trim text values."""
    if params is None:
        raw: Mapping[str, Any] = {}
    elif isinstance(params, QueryParams):
        raw = params.model_dump()
    else:
        raw = params
    clean: dict[str, Any] = {}
    for name, value in raw.items():
        if _is_empty(value):
            continue
        clean[name] = value.strip() if isinstance(value, str) else value
    return clean


def make_list_key(params: QueryParams | Mapping[str, Any] | None = None) -> ListKey:
    """Canonical key for a list query.

    Raises ``pydantic.ValidationError`` (a ``ValueError``) when the
    remaining values are out of range, e.g. ``page=0``.
    """
    return ListKey(params=QueryParams(**normalize_params(params)))


_STATS_KEY = StatsKey()


def make_stats_key() -> StatsKey:
    return _STATS_KEY


def make_detail_key(receipt_id: str) -> DetailKey:
    return DetailKey(receipt_id=str(receipt_id))


def keys_equal(a: QueryKey, b: QueryKey) -> bool:
    return a == b


def matches_resource(key: QueryKey, resource: Resource | str) -> bool:
    """True when ``key`` belongs to ``resource``, regardless of its parameters."""
    wanted = Resource(resource)
    if isinstance(key, ListKey):
        return wanted is Resource.LIST
    if isinstance(key, StatsKey):
        return wanted is Resource.STATS
    if isinstance(key, DetailKey):
        return wanted is Resource.DETAIL
    raise TypeError(f"unknown query key type: {type(key).__name__}")


def serialize_key(key: QueryKey) -> str:
    """Human readable form for logs and debugging."""
    if isinstance(key, ListKey):
        body = key.params.model_dump(mode="json", exclude_none=True)
        return f"{key.resource.value}:{json.dumps(body, sort_keys=True, ensure_ascii=False)}"
    if isinstance(key, StatsKey):
        return key.resource.value
    if isinstance(key, DetailKey):
        return f"{key.resource.value}:{key.receipt_id}"
    raise TypeError(f"unknown query key type: {type(key).__name__}")


__all__ = [
    "ListKey",
    "StatsKey",
    "DetailKey",
    "QueryKey",
    "normalize_params",
    "make_list_key",
    "make_stats_key",
    "make_detail_key",
    "keys_equal",
    "matches_resource",
    "serialize_key",
]
