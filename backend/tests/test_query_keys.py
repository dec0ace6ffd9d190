from __future__ import annotations

import datetime as dt

import pytest
from pydantic import ValidationError

from fisboard.models.enums import Resource, SortField, SortOrder
from fisboard.models.schemas import QueryParams
from fisboard.services.query_keys import (
    DetailKey,
    ListKey,
    keys_equal,
    make_detail_key,
    make_list_key,
    make_stats_key,
    matches_resource,
    serialize_key,
)


def test_empty_optional_fields_do_not_change_the_key():
    bare = make_list_key({"page": 1, "limit": 20})
    noisy = make_list_key(
        {"page": 1, "limit": 20, "search": "", "record_no": "   ", "min_amount": None, "max_amount": float("nan")}
    )
    assert keys_equal(bare, noisy)
    assert hash(bare) == hash(noisy)


def test_text_values_are_trimmed():
    assert make_list_key({"search": "  FIS-1 "}) == make_list_key({"search": "FIS-1"})


def test_defaults_fill_missing_paging_and_sorting():
    key = make_list_key()
    assert key.params == QueryParams(page=1, limit=20, sort_by=SortField.CREATED_AT, sort_order=SortOrder.DESC)


def test_different_filters_give_different_keys():
    assert make_list_key({"min_amount": 10}) != make_list_key({"min_amount": 20})
    assert make_list_key({"date_from": dt.date(2024, 1, 1)}) != make_list_key()


def test_out_of_range_params_are_rejected():
    with pytest.raises(ValidationError):
        make_list_key({"page": 0})
    with pytest.raises(ValidationError):
        make_list_key({"min_amount": -1})


def test_stats_key_is_shared_and_matches_only_stats():
    assert make_stats_key() is make_stats_key()
    assert matches_resource(make_stats_key(), Resource.STATS)
    assert not matches_resource(make_stats_key(), Resource.LIST)


def test_matches_resource_ignores_parameters():
    assert matches_resource(make_list_key({"page": 3, "search": "x"}), "list")
    assert matches_resource(make_detail_key("abc"), Resource.DETAIL)
    assert not matches_resource(make_detail_key("abc"), Resource.LIST)


def test_matches_resource_rejects_unknown_keys():
    with pytest.raises(TypeError):
        matches_resource(("list", {}), Resource.LIST)  # type: ignore[arg-type]


def test_serialize_key_is_stable_for_logs():
    assert serialize_key(make_stats_key()) == "stats"
    assert serialize_key(DetailKey("r1")) == "detail:r1"
    text = serialize_key(make_list_key({"search": "ş", "page": 2}))
    assert text.startswith("list:{")
    assert '"page": 2' in text and '"search": "ş"' in text
    assert isinstance(make_list_key(), ListKey)
