from __future__ import annotations

import math

import pytest

from fisboard.models.schemas import ApiResponse, ErrorInfo, Filters, PaginatedResult, Statistics
from fisboard.models.enums import ErrorKind


@pytest.mark.parametrize("total_count,limit", [(0, 20), (1, 20), (20, 20), (21, 20), (45, 20), (7, 1)])
def test_total_pages_and_navigation_flags(total_count, limit):
    expected_pages = math.ceil(total_count / limit)
    for page in range(1, max(expected_pages, 1) + 1):
        result = PaginatedResult.build([], total_count, page, limit)
        assert result.total_pages == expected_pages
        assert result.has_next_page == (page < expected_pages)
        assert result.has_prev_page == (page > 1)


def test_forty_five_records_in_pages_of_twenty():
    first = PaginatedResult.build([], 45, 1, 20)
    assert (first.total_pages, first.has_next_page, first.has_prev_page) == (3, True, False)
    last = PaginatedResult.build([], 45, 3, 20)
    assert (last.has_next_page, last.has_prev_page) == (False, True)


def test_statistics_average_is_zero_without_records():
    stats = Statistics.from_totals(total_records=0, total_amount=0.0, today_records=0, recent_records=0)
    assert stats.average_amount == 0
    assert stats.average_daily_records == 0


def test_statistics_averages():
    stats = Statistics.from_totals(total_records=4, total_amount=200.0, today_records=1, recent_records=60)
    assert stats.average_amount == 50.0
    assert stats.average_daily_records == 2.0
    assert stats.model_dump(by_alias=True)["totalRecords"] == 4


def test_error_info_only_transport_is_retryable():
    assert ErrorInfo(message="down").retryable
    assert not ErrorInfo(kind=ErrorKind.VALIDATION, message="bad").retryable
    assert not ApiResponse.fail("bad", kind=ErrorKind.UPSTREAM).error.retryable


def test_filters_normalise_inputs():
    filters = Filters(min_amount=None, max_amount=12.5)
    assert filters.min_amount == "" and filters.max_amount == "12.5"
    assert filters.is_active
    assert not Filters(search="   ").is_active
    with pytest.raises(TypeError):
        filters.merged(colour="red")
