from __future__ import annotations

import asyncio

import pytest

from fisboard.models.enums import CacheStatus, ErrorKind
from fisboard.models.schemas import ApiResponse
from fisboard.services.cache import CacheConfig, CacheStore
from fisboard.services.query_keys import make_detail_key, make_list_key, make_stats_key


class CountingFetcher:
    """Returns queued responses in order; repeats the last one."""

    def __init__(self, *responses, gate: asyncio.Event | None = None):
        self.responses = list(responses) or [ApiResponse.ok("data")]
        self.calls = 0
        self.gate = gate

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        index = min(self.calls, len(self.responses)) - 1
        return self.responses[index]


def _store(**overrides) -> CacheStore:
    config = {"retry_interval": 0, "retry_count": 0, "dedupe_window": 0}
    config.update(overrides)
    return CacheStore(CacheConfig(**config))


@pytest.mark.asyncio
async def test_concurrent_subscribers_share_one_fetch():
    gate = asyncio.Event()
    fetcher = CountingFetcher(ApiResponse.ok([1, 2]), gate=gate)
    async with _store() as store:
        key = make_list_key({"page": 1})
        first = store.subscribe(key, fetcher)
        second = store.subscribe(make_list_key({"page": 1, "search": ""}), fetcher)
        gate.set()
        snapshot = await second.ready()
        assert fetcher.calls == 1
        assert snapshot.data == [1, 2]
        assert snapshot.subscriber_count == 2
        first.close()
        assert store.get_snapshot(key).subscriber_count == 1


@pytest.mark.asyncio
async def test_fresh_entry_is_not_refetched_within_dedupe_window():
    fetcher = CountingFetcher()
    async with _store(dedupe_window=60) as store:
        await store.subscribe(make_stats_key(), fetcher).ready()
        await store.subscribe(make_stats_key(), fetcher).ready()
        assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_failed_refetch_keeps_previous_data():
    fetcher = CountingFetcher(ApiResponse.ok({"total": 5}), ApiResponse.fail("connection reset"))
    async with _store() as store:
        key = make_stats_key()
        await store.subscribe(key, fetcher).ready()
        await store.mutate(key)
        snapshot = store.get_snapshot(key)
        assert snapshot.status is CacheStatus.ERROR
        assert snapshot.data == {"total": 5}
        assert snapshot.error.kind is ErrorKind.TRANSPORT


@pytest.mark.asyncio
async def test_transport_errors_are_retried_until_success():
    fetcher = CountingFetcher(ApiResponse.fail("timeout"), ApiResponse.fail("timeout"), ApiResponse.ok("ok"))
    async with _store(retry_count=3) as store:
        snapshot = await store.subscribe(make_stats_key(), fetcher).ready()
        assert fetcher.calls == 3
        assert snapshot.status is CacheStatus.SUCCESS
        assert snapshot.data == "ok"


@pytest.mark.asyncio
async def test_retries_stop_after_retry_count():
    fetcher = CountingFetcher(ApiResponse.fail("unreachable"))
    async with _store(retry_count=2) as store:
        snapshot = await store.subscribe(make_stats_key(), fetcher).ready()
        assert fetcher.calls == 3
        assert snapshot.status is CacheStatus.ERROR
        assert snapshot.data is None


@pytest.mark.asyncio
async def test_validation_errors_are_not_retried_and_leave_entry_stale():
    fetcher = CountingFetcher(
        ApiResponse.fail("bad query", kind=ErrorKind.VALIDATION, code="INVALID_QUERY"),
        ApiResponse.ok("recovered"),
    )
    async with _store(retry_count=3, dedupe_window=60) as store:
        key = make_list_key()
        snapshot = await store.subscribe(key, fetcher).ready()
        assert fetcher.calls == 1
        assert snapshot.error.code == "INVALID_QUERY"
        # stale despite the dedupe window, so the next subscriber refetches
        snapshot = await store.subscribe(key, fetcher).ready()
        assert fetcher.calls == 2
        assert snapshot.data == "recovered"


@pytest.mark.asyncio
async def test_raising_fetcher_is_treated_as_transport_error():
    async def broken():
        raise ConnectionError("refused")

    async with _store() as store:
        snapshot = await store.subscribe(make_stats_key(), broken).ready()
        assert snapshot.status is CacheStatus.ERROR
        assert snapshot.error.kind is ErrorKind.TRANSPORT
        assert "refused" in snapshot.error.message


@pytest.mark.asyncio
async def test_optimistic_value_survives_an_older_fetch():
    gate = asyncio.Event()
    fetcher = CountingFetcher(ApiResponse.ok("server-before-write"), gate=gate)
    async with _store() as store:
        key = make_stats_key()
        store.subscribe(key, fetcher)
        await asyncio.sleep(0)
        assert await store.mutate(key, "optimistic", revalidate=False) == "optimistic"
        gate.set()
        snapshot = await store.wait_for(key)
        assert snapshot.data == "optimistic"
        assert snapshot.status is CacheStatus.SUCCESS


@pytest.mark.asyncio
async def test_revalidation_after_mutate_is_chained_behind_inflight_fetch():
    gate = asyncio.Event()
    seen = []

    async def fetcher():
        seen.append(len(seen) + 1)
        number = len(seen)
        if number == 1:
            await gate.wait()
        return ApiResponse.ok(f"v{number}")

    async with _store() as store:
        key = make_stats_key()
        store.subscribe(key, fetcher)
        await asyncio.sleep(0)
        pending = asyncio.ensure_future(store.mutate(key, "optimistic"))
        await asyncio.sleep(0)
        assert store.get_snapshot(key).data == "optimistic"
        gate.set()
        assert await pending == "v2"
        assert seen == [1, 2]


@pytest.mark.asyncio
async def test_listener_receives_snapshots_and_errors_are_isolated():
    received = []

    def listener(snapshot):
        received.append(snapshot.status)
        raise RuntimeError("listener bug")

    async with _store() as store:
        snapshot = await store.subscribe(make_stats_key(), CountingFetcher(), listener=listener).ready()
        assert snapshot.status is CacheStatus.SUCCESS
        assert received == [CacheStatus.LOADING, CacheStatus.SUCCESS]


@pytest.mark.asyncio
async def test_background_refresh_refetches_while_subscribed():
    fetcher = CountingFetcher()
    async with _store() as store:
        subscription = store.subscribe(make_stats_key(), fetcher, refresh_interval=0.01)
        await asyncio.sleep(0.08)
        subscription.close()
        await store.wait_for(make_stats_key())
        calls = fetcher.calls
        assert calls >= 2
        await asyncio.sleep(0.03)
        assert fetcher.calls == calls


@pytest.mark.asyncio
async def test_entries_are_retained_without_eviction_policy():
    async with _store() as store:
        key = make_detail_key("r1")
        subscription = store.subscribe(key, CountingFetcher())
        await subscription.ready()
        subscription.close()
        await asyncio.sleep(0.02)
        assert store.get_snapshot(key).subscriber_count == 0


@pytest.mark.asyncio
async def test_idle_entries_are_evicted_after_grace_period():
    async with _store(eviction_grace=0.01) as store:
        key = make_detail_key("r1")
        subscription = store.subscribe(key, CountingFetcher())
        await subscription.ready()
        subscription.close()
        await asyncio.sleep(0.05)
        assert store.get_snapshot(key) is None


@pytest.mark.asyncio
async def test_resubscribing_cancels_pending_eviction():
    async with _store(eviction_grace=0.03) as store:
        key = make_detail_key("r1")
        first = store.subscribe(key, CountingFetcher())
        await first.ready()
        first.close()
        store.subscribe(key, CountingFetcher())
        await asyncio.sleep(0.06)
        assert store.get_snapshot(key) is not None


@pytest.mark.asyncio
async def test_least_recently_used_idle_entries_are_dropped_over_limit():
    async with _store(max_idle_entries=1) as store:
        older = store.subscribe(make_detail_key("a"), CountingFetcher())
        newer = store.subscribe(make_detail_key("b"), CountingFetcher())
        await older.ready()
        await newer.ready()
        older.close()
        newer.close()
        assert store.keys() == [make_detail_key("b")]


@pytest.mark.asyncio
async def test_aclose_drops_entries_and_rejects_new_subscriptions():
    store = _store()
    gate = asyncio.Event()
    store.subscribe(make_stats_key(), CountingFetcher(gate=gate), refresh_interval=0.01)
    assert store.stats()["in_flight"] == 1
    await store.aclose()
    assert store.stats() == {"size": 0, "keys": [], "in_flight": 0}
    with pytest.raises(RuntimeError):
        store.subscribe(make_stats_key(), CountingFetcher())


@pytest.mark.asyncio
async def test_stale_entry_is_served_at_once_and_revalidated_in_background():
    now = [100.0]
    gate = asyncio.Event()
    responses = iter(["old", "new"])
    calls = []

    async def fetcher():
        calls.append(now[0])
        value = next(responses)
        if value == "new":
            await gate.wait()
        return ApiResponse.ok(value)

    store = CacheStore(CacheConfig(retry_interval=0, retry_count=0, dedupe_window=2), clock=lambda: now[0])
    async with store:
        key = make_stats_key()
        await store.subscribe(key, fetcher).ready()
        now[0] += 1
        assert store.subscribe(key, fetcher).snapshot().status is CacheStatus.SUCCESS
        assert len(calls) == 1

        now[0] += 1
        snapshot = store.subscribe(key, fetcher).snapshot()
        assert snapshot.data == "old"
        assert snapshot.status is CacheStatus.VALIDATING
        store.subscribe(key, fetcher)

        gate.set()
        snapshot = await store.wait_for(key)
        assert calls == [100.0, 102.0]
        assert snapshot.data == "new"
        assert snapshot.status is CacheStatus.SUCCESS
        assert snapshot.subscriber_count == 4
