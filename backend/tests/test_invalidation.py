from __future__ import annotations

import pytest

from fisboard.models.schemas import ApiResponse
from fisboard.services.cache import CacheConfig, CacheStore
from fisboard.services.invalidation import InvalidationCoordinator
from fisboard.services.query_keys import make_detail_key, make_list_key, make_stats_key


class Fetcher:
    def __init__(self, name: str, fail_after: int | None = None):
        self.name = name
        self.calls = 0
        self.fail_after = fail_after

    async def __call__(self):
        self.calls += 1
        if self.fail_after is not None and self.calls > self.fail_after:
            return ApiResponse.fail(f"{self.name} unavailable")
        return ApiResponse.ok(f"{self.name}#{self.calls}")


def _store() -> CacheStore:
    return CacheStore(CacheConfig(retry_count=0, retry_interval=0, dedupe_window=60))


@pytest.mark.asyncio
async def test_write_revalidates_stats_and_every_list_variant_despite_one_failure():
    async with _store() as store:
        stats = Fetcher("stats")
        page_one = Fetcher("page1")
        page_two = Fetcher("page2", fail_after=1)
        filtered = Fetcher("filtered")
        subs = [
            store.subscribe(make_stats_key(), stats),
            store.subscribe(make_list_key({"page": 1}), page_one),
            store.subscribe(make_list_key({"page": 2}), page_two),
            store.subscribe(make_list_key({"search": "FIS"}), filtered),
        ]
        for sub in subs:
            await sub.ready()

        report = await InvalidationCoordinator(store).on_write_completed()

        assert report.revalidated_count == 4
        assert report.ok is False
        assert [f.key for f in report.failures] == [make_list_key({"page": 2})]
        assert (stats.calls, page_one.calls, page_two.calls, filtered.calls) == (2, 2, 2, 2)
        assert store.get_snapshot(make_stats_key()).data == "stats#2"
        assert store.get_snapshot(make_list_key({"search": "FIS"})).data == "filtered#2"
        # failed revalidation keeps the last good page
        assert store.get_snapshot(make_list_key({"page": 2})).data == "page2#1"


@pytest.mark.asyncio
async def test_entries_without_subscribers_are_marked_stale_only():
    async with _store() as store:
        fetcher = Fetcher("page1")
        sub = store.subscribe(make_list_key(), fetcher)
        await sub.ready()
        sub.close()

        report = await InvalidationCoordinator(store).on_write_completed()
        assert report.ok
        assert report.revalidated_count == 0
        assert fetcher.calls == 1

        # stale entry refetches on the next subscription despite the dedupe window
        await store.subscribe(make_list_key(), fetcher).ready()
        assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_receipt_update_and_delete_touch_the_detail_entry():
    async with _store() as store:
        coordinator = InvalidationCoordinator(store)
        detail = Fetcher("detail")
        await store.subscribe(make_detail_key("r1"), detail).ready()
        await store.subscribe(make_detail_key("r2"), Fetcher("other")).ready()

        report = await coordinator.on_receipt_updated("r1")
        assert report.ok
        assert detail.calls == 2
        assert store.get_snapshot(make_detail_key("r2")).data == "other#1"

        await coordinator.on_receipt_deleted("r1")
        assert store.get_snapshot(make_detail_key("r1")) is None
        assert detail.calls == 2


@pytest.mark.asyncio
async def test_invalidate_all_covers_every_resource():
    async with _store() as store:
        fetchers = [Fetcher("stats"), Fetcher("list"), Fetcher("detail")]
        keys = [make_stats_key(), make_list_key(), make_detail_key("r1")]
        for key, fetcher in zip(keys, fetchers):
            await store.subscribe(key, fetcher).ready()

        report = await InvalidationCoordinator(store).invalidate_all()
        assert report.revalidated_count == 3
        assert [f.calls for f in fetchers] == [2, 2, 2]
