"""In-process cache for dashboard queries with stale-while-revalidate.

Usage guidelines:
- Construct one :class:`CacheStore` at application start and pass it to
  every controller; controllers never keep their own copies of fetched data.
- Subscribe with a fetcher returning an ``ApiResponse``; read values from
  the immutable :class:`CacheSnapshot` handed to listeners.
- Invalidate on writes (upload, update, delete) through
  ``fisboard.services.invalidation``.

Guarantees:
- At most one fetch per key is in flight. Concurrent triggers for the same
  key attach to the running task.
- A failed fetch keeps the last good ``data`` and sets ``status=error``.
- Transport errors are retried ``retry_count`` times, ``retry_interval``
  seconds apart. Validation errors are surfaced at once and leave the
  entry stale so the next subscriber refetches.
- Optimistic writes and invalidations bump the entry generation; a result
  from a fetch issued under an older generation is discarded and a fresh
  fetch is chained behind it.

All methods must be called from the event loop thread. ``subscribe`` and
``unsubscribe`` are plain functions that schedule work on the running loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from fisboard.core.config import Settings, settings
from fisboard.core.observability import sentry_breadcrumb
from fisboard.models.enums import CacheStatus
from fisboard.models.schemas import ApiResponse, ErrorInfo
from fisboard.services.query_keys import QueryKey, serialize_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[ApiResponse[Any]]]
Listener = Callable[["CacheSnapshot[Any]"], None]
KeyPredicate = Callable[[QueryKey], bool]

_MISSING: Any = object()


@dataclass(frozen=True)
class CacheConfig:
    """Store-wide defaults; individual subscriptions may override the fetch policy.

    ``background_refresh_interval``, ``eviction_grace`` and
    ``max_idle_entries`` are disabled when ``None``.
    """

    dedupe_window: float = 10.0
    retry_count: int = 3
    retry_interval: float = 5.0
    background_refresh_interval: Optional[float] = None
    eviction_grace: Optional[float] = None
    max_idle_entries: Optional[int] = None

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "CacheConfig":
        cfg = source or settings
        return cls(
            dedupe_window=cfg.CACHE_DEDUPE_WINDOW_SECONDS,
            retry_count=cfg.CACHE_RETRY_COUNT,
            retry_interval=cfg.CACHE_RETRY_INTERVAL_SECONDS,
            background_refresh_interval=cfg.CACHE_REFRESH_INTERVAL_SECONDS,
            eviction_grace=cfg.CACHE_EVICTION_GRACE_SECONDS,
            max_idle_entries=cfg.CACHE_MAX_IDLE_ENTRIES,
        )


@dataclass(frozen=True)
class CacheSnapshot(Generic[T]):
    """Read-only view of a cache entry at one point in time."""

    key: QueryKey
    data: Optional[T]
    error: Optional[ErrorInfo]
    status: CacheStatus
    last_fetched_at: Optional[float]
    subscriber_count: int

    @property
    def is_loading(self) -> bool:
        """First load in progress (nothing to show yet)."""
        return self.status is CacheStatus.LOADING and self.data is None

    @property
    def is_validating(self) -> bool:
        return self.status in (CacheStatus.LOADING, CacheStatus.VALIDATING)


@dataclass(frozen=True)
class RevalidationOutcome:
    key: QueryKey
    ok: bool
    revalidated: bool
    error: Optional[ErrorInfo] = None


@dataclass(frozen=True)
class _FetchPolicy:
    dedupe_window: float
    retry_count: int
    retry_interval: float


@dataclass
class _InFlight:
    task: asyncio.Task
    generation: int


@dataclass(eq=False)
class CacheEntry:
    """Mutable cache slot; owned by :class:`CacheStore` only."""

    key: QueryKey
    policy: _FetchPolicy
    data: Any = None
    error: Optional[ErrorInfo] = None
    status: CacheStatus = CacheStatus.IDLE
    last_fetched_at: Optional[float] = None
    stale: bool = False
    generation: int = 0
    fetcher: Optional[Fetcher] = None
    subscriptions: list["Subscription"] = field(default_factory=list)
    eviction_handle: Optional[asyncio.TimerHandle] = None

    @property
    def subscriber_count(self) -> int:
        return len(self.subscriptions)

    def snapshot(self) -> CacheSnapshot[Any]:
        return CacheSnapshot(
            key=self.key,
            data=self.data,
            error=self.error,
            status=self.status,
            last_fetched_at=self.last_fetched_at,
            subscriber_count=self.subscriber_count,
        )


class Subscription:
    """Handle returned by :meth:`CacheStore.subscribe`."""

    def __init__(self, store: "CacheStore", key: QueryKey, listener: Optional[Listener]) -> None:
        self.key = key
        self.listener = listener
        self.active = True
        self._store = store
        self._refresh_task: Optional[asyncio.Task] = None

    def snapshot(self) -> Optional[CacheSnapshot[Any]]:
        return self._store.get_snapshot(self.key)

    async def ready(self) -> Optional[CacheSnapshot[Any]]:
        """Wait until no fetch is pending for this key and return the snapshot."""
        return await self._store.wait_for(self.key)

    def close(self) -> None:
        self._store.unsubscribe(self)


class CacheStore:
    """Keyed cache of query results shared by every dashboard view."""

    def __init__(self, config: CacheConfig | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: "OrderedDict[QueryKey, CacheEntry]" = OrderedDict()
        self._inflight: dict[QueryKey, _InFlight] = {}
        self._closed = False

    async def __aenter__(self) -> "CacheStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Subscriptions

    def subscribe(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        *,
        listener: Optional[Listener] = None,
        dedupe_window: Optional[float] = None,
        refresh_interval: Optional[float] = _MISSING,
        retry_count: Optional[int] = None,
        retry_interval: Optional[float] = None,
    ) -> Subscription:
        """Register interest in ``key`` and fetch it if missing or stale.

        The current value (possibly stale) is available right away through
        ``Subscription.snapshot()``; revalidation runs in the background.
        """
        if self._closed:
            raise RuntimeError("cache store is closed")
        policy = _FetchPolicy(
            dedupe_window=self.config.dedupe_window if dedupe_window is None else dedupe_window,
            retry_count=self.config.retry_count if retry_count is None else retry_count,
            retry_interval=self.config.retry_interval if retry_interval is None else retry_interval,
        )
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key, policy=policy)
            self._entries[key] = entry
        else:
            self._entries.move_to_end(key)
            entry.policy = policy
        if entry.eviction_handle is not None:
            entry.eviction_handle.cancel()
            entry.eviction_handle = None
        entry.fetcher = fetcher

        subscription = Subscription(self, key, listener)
        entry.subscriptions.append(subscription)

        if self._needs_fetch(entry):
            self._revalidate(entry)

        interval = self.config.background_refresh_interval if refresh_interval is _MISSING else refresh_interval
        if interval:
            subscription._refresh_task = asyncio.get_running_loop().create_task(
                self._refresh_loop(subscription, interval)
            )
        logger.debug("[cache] subscribe %s (subscribers=%d)", serialize_key(key), entry.subscriber_count)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Release a subscription; idle entries follow the eviction policy."""
        if not subscription.active:
            return
        subscription.active = False
        if subscription._refresh_task is not None:
            subscription._refresh_task.cancel()
            subscription._refresh_task = None
        entry = self._entries.get(subscription.key)
        if entry is None:
            return
        if subscription in entry.subscriptions:
            entry.subscriptions.remove(subscription)
        if entry.subscriber_count == 0:
            self._schedule_eviction(entry)
            self._enforce_idle_limit()

    # ------------------------------------------------------------------
    # Reads

    def get_snapshot(self, key: QueryKey) -> Optional[CacheSnapshot[Any]]:
        entry = self._entries.get(key)
        return entry.snapshot() if entry is not None else None

    def keys(self) -> list[QueryKey]:
        return list(self._entries.keys())

    def stats(self) -> dict[str, Any]:
        """Size and keys of the cache, for debugging."""
        return {
            "size": len(self._entries),
            "keys": [serialize_key(k) for k in self._entries],
            "in_flight": len(self._inflight),
        }

    async def wait_for(self, key: QueryKey) -> Optional[CacheSnapshot[Any]]:
        """Wait for pending fetches on ``key`` (including chained ones)."""
        while True:
            record = self._inflight.get(key)
            if record is None or record.task.done():
                break
            await asyncio.wait([record.task])
        return self.get_snapshot(key)

    # ------------------------------------------------------------------
    # Writes

    async def mutate(self, key: QueryKey, data: Any = _MISSING, *, revalidate: bool = True) -> Any:
        """Replace cached data optimistically and/or refetch.

        - ``data`` given: the value is published at once; with ``revalidate``
          a background fetch reconciles it with the server.
        - ``data`` omitted: the entry is refetched regardless of freshness.

        Returns the entry's data once the triggered fetch (if any) settles.
        """
        entry = self._entries.get(key)
        if data is not _MISSING:
            if entry is None:
                entry = CacheEntry(key=key, policy=self._default_policy())
                self._entries[key] = entry
                self._schedule_eviction(entry)
            else:
                self._entries.move_to_end(key)
            entry.generation += 1
            entry.data = data
            entry.error = None
            entry.status = CacheStatus.SUCCESS
            entry.last_fetched_at = self._clock()
            entry.stale = False
            self._notify(entry)
            if not revalidate:
                return data
        elif entry is None:
            return None
        else:
            entry.stale = True

        task = self._revalidate(entry)
        if task is None:
            return entry.data
        return await asyncio.shield(task)

    async def invalidate_matching(self, predicate: KeyPredicate) -> list[RevalidationOutcome]:
        """Mark matching entries stale and revalidate those with subscribers.

        Revalidations run concurrently and are awaited together; one failing
        does not stop or hide the others.
        """
        pending: list[tuple[CacheEntry, asyncio.Task]] = []
        outcomes: list[RevalidationOutcome] = []
        for key, entry in list(self._entries.items()):
            if not predicate(key):
                continue
            entry.stale = True
            # a fetch issued before the write may not reflect it
            entry.generation += 1
            if entry.subscriber_count == 0:
                outcomes.append(RevalidationOutcome(key=key, ok=True, revalidated=False))
                continue
            task = self._revalidate(entry)
            if task is None:
                outcomes.append(RevalidationOutcome(key=key, ok=True, revalidated=False))
                continue
            pending.append((entry, task))

        results = await asyncio.gather(*(asyncio.shield(t) for _, t in pending), return_exceptions=True)
        for (entry, _), result in zip(pending, results):
            if isinstance(result, BaseException):
                error = ErrorInfo(message=str(result) or result.__class__.__name__)
                outcomes.append(RevalidationOutcome(key=entry.key, ok=False, revalidated=True, error=error))
            else:
                ok = entry.status is CacheStatus.SUCCESS
                outcomes.append(
                    RevalidationOutcome(key=entry.key, ok=ok, revalidated=True, error=None if ok else entry.error)
                )
        return outcomes

    def evict(self, key: QueryKey) -> bool:
        """Drop an entry outright (used after deletes)."""
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        if entry.eviction_handle is not None:
            entry.eviction_handle.cancel()
        for subscription in list(entry.subscriptions):
            subscription.active = False
            if subscription._refresh_task is not None:
                subscription._refresh_task.cancel()
        logger.debug("[cache] evicted %s", serialize_key(key))
        return True

    async def aclose(self) -> None:
        """Cancel timers and in-flight fetches and drop every entry."""
        self._closed = True
        tasks: list[asyncio.Task] = []
        for entry in self._entries.values():
            if entry.eviction_handle is not None:
                entry.eviction_handle.cancel()
            for subscription in entry.subscriptions:
                subscription.active = False
                if subscription._refresh_task is not None:
                    subscription._refresh_task.cancel()
                    tasks.append(subscription._refresh_task)
        for record in self._inflight.values():
            record.task.cancel()
            tasks.append(record.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        self._entries.clear()

    # ------------------------------------------------------------------
    # Internals

    def _default_policy(self) -> _FetchPolicy:
        return _FetchPolicy(
            dedupe_window=self.config.dedupe_window,
            retry_count=self.config.retry_count,
            retry_interval=self.config.retry_interval,
        )

    def _is_fetching(self, key: QueryKey) -> bool:
        record = self._inflight.get(key)
        return record is not None and not record.task.done()

    def _needs_fetch(self, entry: CacheEntry) -> bool:
        if self._is_fetching(entry.key):
            return False
        if entry.stale or entry.last_fetched_at is None:
            return True
        return self._clock() - entry.last_fetched_at >= entry.policy.dedupe_window

    def _revalidate(self, entry: CacheEntry) -> Optional[asyncio.Task]:
        """Start (or join) the fetch for ``entry``; ``None`` without a fetcher."""
        if entry.fetcher is None:
            return None
        record = self._inflight.get(entry.key)
        if record is not None and not record.task.done():
            if record.generation == entry.generation:
                return record.task
            task = asyncio.get_running_loop().create_task(self._fetch_after(record.task, entry))
        else:
            task = asyncio.get_running_loop().create_task(self._fetch(entry))
        entry.status = CacheStatus.VALIDATING if entry.data is not None else CacheStatus.LOADING
        new_record = _InFlight(task=task, generation=entry.generation)
        self._inflight[entry.key] = new_record
        task.add_done_callback(lambda _t, key=entry.key, rec=new_record: self._clear_inflight(key, rec))
        return task

    def _clear_inflight(self, key: QueryKey, record: _InFlight) -> None:
        if self._inflight.get(key) is record:
            del self._inflight[key]

    async def _fetch_after(self, previous: asyncio.Task, entry: CacheEntry) -> Any:
        await asyncio.wait([previous])
        return await self._fetch(entry)

    async def _fetch(self, entry: CacheEntry) -> Any:
        generation = entry.generation
        policy = entry.policy
        entry.status = CacheStatus.VALIDATING if entry.data is not None else CacheStatus.LOADING
        self._notify(entry)

        attempt = 0
        while True:
            result = await self._call_fetcher(entry)
            if entry.generation != generation:
                logger.debug("[cache] dropping outdated result for %s", serialize_key(entry.key))
                return entry.data
            if result.success:
                entry.data = result.data
                entry.error = None
                entry.status = CacheStatus.SUCCESS
                entry.last_fetched_at = self._clock()
                entry.stale = False
                self._notify(entry)
                return entry.data

            error = result.error or ErrorInfo(message="unknown error")
            if error.retryable and attempt < policy.retry_count:
                attempt += 1
                logger.info(
                    "[cache] fetch for %s failed (%s); retry %d/%d in %.1fs",
                    serialize_key(entry.key), error.message, attempt, policy.retry_count, policy.retry_interval,
                )
                await asyncio.sleep(policy.retry_interval)
                if entry.generation != generation:
                    return entry.data
                continue

            entry.error = error
            entry.status = CacheStatus.ERROR
            if not error.retryable:
                entry.stale = True
            logger.warning("[cache] fetch for %s failed: %s", serialize_key(entry.key), error.message)
            sentry_breadcrumb(
                category="cache",
                message="revalidation_failed",
                level="warning",
                data={"key": serialize_key(entry.key), "kind": error.kind.value, "attempts": attempt + 1},
            )
            self._notify(entry)
            return entry.data

    async def _call_fetcher(self, entry: CacheEntry) -> ApiResponse[Any]:
        fetcher = entry.fetcher
        if fetcher is None:
            return ApiResponse.fail("no fetcher registered")
        try:
            return await fetcher()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # fetchers should return envelopes; a raise is treated as a transport failure
            logger.warning("[cache] fetcher for %s raised %r", serialize_key(entry.key), exc)
            return ApiResponse.fail(str(exc) or exc.__class__.__name__)

    def _notify(self, entry: CacheEntry) -> None:
        snapshot = entry.snapshot()
        for subscription in list(entry.subscriptions):
            if subscription.listener is None or not subscription.active:
                continue
            try:
                subscription.listener(snapshot)
            except Exception:
                logger.exception("[cache] listener for %s failed", serialize_key(entry.key))

    async def _refresh_loop(self, subscription: Subscription, interval: float) -> None:
        while subscription.active:
            await asyncio.sleep(interval)
            entry = self._entries.get(subscription.key)
            if entry is None or not subscription.active:
                return
            task = self._revalidate(entry)
            if task is not None:
                await asyncio.shield(task)

    def _schedule_eviction(self, entry: CacheEntry) -> None:
        grace = self.config.eviction_grace
        if grace is None or entry.subscriber_count > 0:
            return
        if entry.eviction_handle is not None:
            entry.eviction_handle.cancel()
        entry.eviction_handle = asyncio.get_running_loop().call_later(grace, self._evict_if_idle, entry.key)

    def _evict_if_idle(self, key: QueryKey) -> None:
        entry = self._entries.get(key)
        if entry is None or entry.subscriber_count > 0:
            return
        entry.eviction_handle = None
        self.evict(key)

    def _enforce_idle_limit(self) -> None:
        limit = self.config.max_idle_entries
        if limit is None:
            return
        idle = [k for k, e in self._entries.items() if e.subscriber_count == 0 and not self._is_fetching(k)]
        # OrderedDict order is least recently used first
        for key in idle[: max(0, len(idle) - limit)]:
            self.evict(key)


__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheSnapshot",
    "CacheStore",
    "RevalidationOutcome",
    "Subscription",
]
