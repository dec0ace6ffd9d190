"""Dashboard statistics bound to the shared cache.

Presets:

- ``live``: refresh every 30 s, retry failures after 2 s
- ``dashboard``: refresh every 2 min, up to 5 retries
- ``background``: refresh every 10 min, up to 2 retries
"""

from __future__ import annotations

import math
from typing import Any, Callable, Optional

from fisboard.core.config import settings
from fisboard.models.schemas import ErrorInfo, Statistics
from fisboard.services.cache import CacheSnapshot, CacheStore, Subscription
from fisboard.services.data_source import ReceiptDataSource
from fisboard.services.query_keys import make_stats_key
from fisboard.utils.formatting import format_currency


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class StatsViewController:
    def __init__(
        self,
        store: CacheStore,
        data_source: ReceiptDataSource,
        *,
        refresh_interval: float | None = None,
        retry_count: int | None = None,
        retry_interval: float | None = None,
        dedupe_window: float | None = None,
        enabled: bool = True,
        listener: Optional[Callable[["StatsViewController"], None]] = None,
        locale: str | None = None,
        currency: str | None = None,
    ) -> None:
        """``refresh_interval=None`` uses ``CACHE_REFRESH_INTERVAL_SECONDS``; ``0`` disables polling."""
        self.store = store
        self.data_source = data_source
        self.key = make_stats_key()
        self.refresh_interval = settings.CACHE_REFRESH_INTERVAL_SECONDS if refresh_interval is None else refresh_interval
        self.retry_count = retry_count
        self.retry_interval = retry_interval
        self.dedupe_window = dedupe_window
        self.locale = locale
        self.currency = currency
        self._listener = listener
        self._subscription: Optional[Subscription] = None
        self._snapshot: Optional[CacheSnapshot[Statistics]] = None
        self._enabled = enabled
        if enabled:
            self._subscribe()

    @classmethod
    def live(cls, store: CacheStore, data_source: ReceiptDataSource, **kwargs: Any) -> "StatsViewController":
        kwargs.setdefault("refresh_interval", 30.0)
        kwargs.setdefault("retry_interval", 2.0)
        return cls(store, data_source, **kwargs)

    @classmethod
    def dashboard(cls, store: CacheStore, data_source: ReceiptDataSource, **kwargs: Any) -> "StatsViewController":
        kwargs.setdefault("refresh_interval", 120.0)
        kwargs.setdefault("retry_count", 5)
        return cls(store, data_source, **kwargs)

    @classmethod
    def background(cls, store: CacheStore, data_source: ReceiptDataSource, **kwargs: Any) -> "StatsViewController":
        kwargs.setdefault("refresh_interval", 600.0)
        kwargs.setdefault("retry_count", 2)
        return cls(store, data_source, **kwargs)

    # ------------------------------------------------------------------

    @property
    def data(self) -> Optional[Statistics]:
        return self._snapshot.data if self._snapshot is not None else None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_loading(self) -> bool:
        return self._snapshot is not None and self._snapshot.is_loading

    @property
    def is_validating(self) -> bool:
        return self._snapshot is not None and self._snapshot.is_validating

    @property
    def error(self) -> Optional[ErrorInfo]:
        return self._snapshot.error if self._snapshot is not None else None

    @property
    def has_data(self) -> bool:
        return self.data is not None

    @property
    def is_empty(self) -> bool:
        return self.data is not None and self.data.total_records == 0

    @property
    def formatted_total_amount(self) -> str:
        return format_currency(self.data.total_amount if self.data else 0, self.currency, self.locale)

    @property
    def formatted_average_amount(self) -> str:
        return format_currency(self.data.average_amount if self.data else 0, self.currency, self.locale)

    @property
    def total_amount_growth(self) -> Optional[int]:
        """Today's uploads against the trailing daily average, in percent."""
        if self.data is None:
            return None
        return _round_half_up(self.data.today_records / max(self.data.average_daily_records, 1) * 100 - 100)

    @property
    def records_growth(self) -> Optional[int]:
        if self.data is None or self.data.average_daily_records <= 0:
            return None
        return _round_half_up(self.data.today_records / self.data.average_daily_records * 100 - 100)

    # ------------------------------------------------------------------

    async def refresh(self) -> Optional[Statistics]:
        if not self._enabled:
            return self.data
        await self.store.mutate(self.key)
        return self.data

    async def mutate(self, data: Statistics | None = None, revalidate: bool = True) -> Optional[Statistics]:
        """Optimistically publish ``data``; without it this is :meth:`refresh`."""
        if data is None:
            return await self.refresh()
        await self.store.mutate(self.key, data, revalidate=revalidate)
        return self.data

    async def wait(self) -> Optional[Statistics]:
        if self._enabled:
            await self.store.wait_for(self.key)
        return self.data

    def set_enabled(self, enabled: bool) -> None:
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if enabled:
            self._subscribe()
        else:
            self.close()

    def close(self) -> None:
        self._enabled = False
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def _subscribe(self) -> None:
        self._subscription = self.store.subscribe(
            self.key,
            self.data_source.fetch_stats,
            listener=self._on_snapshot,
            dedupe_window=self.dedupe_window,
            refresh_interval=self.refresh_interval,
            retry_count=self.retry_count,
            retry_interval=self.retry_interval,
        )
        self._snapshot = self._subscription.snapshot()

    def _on_snapshot(self, snapshot: CacheSnapshot[Statistics]) -> None:
        self._snapshot = snapshot
        if self._listener is not None:
            self._listener(self)
