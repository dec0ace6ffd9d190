"""Cross-view cache invalidation after writes.

A new receipt changes both the list pages and the dashboard totals, so
every write event revalidates the statistics entry and every list
variant at the same time. Both sides are awaited with a wait-for-all
combinator: a failure on one side is reported, never raised over the
other.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from fisboard.core.observability import sentry_breadcrumb
from fisboard.models.enums import Resource
from fisboard.services.cache import CacheStore, RevalidationOutcome
from fisboard.services.query_keys import make_detail_key, make_stats_key, matches_resource, serialize_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvalidationReport:
    """Per-key outcomes of one invalidation round."""

    outcomes: list[RevalidationOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failures(self) -> list[RevalidationOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def revalidated_count(self) -> int:
        return sum(1 for o in self.outcomes if o.revalidated)


class InvalidationCoordinator:
    """Fans write events out to the list and statistics cache entries."""

    def __init__(self, store: CacheStore) -> None:
        self.store = store

    async def invalidate_lists(self) -> list[RevalidationOutcome]:
        return await self.store.invalidate_matching(lambda key: matches_resource(key, Resource.LIST))

    async def invalidate_statistics(self) -> list[RevalidationOutcome]:
        stats_key = make_stats_key()
        return await self.store.invalidate_matching(lambda key: key == stats_key)

    async def _fan_out(self, *groups) -> InvalidationReport:
        results = await asyncio.gather(*groups, return_exceptions=True)
        outcomes: list[RevalidationOutcome] = []
        for result in results:
            if isinstance(result, BaseException):
                # the store reports per-key failures as values; this is a bug, keep it visible
                logger.error("[invalidation] invalidation group raised", exc_info=result)
                continue
            outcomes.extend(result)
        report = InvalidationReport(outcomes=outcomes)
        for failure in report.failures:
            logger.warning(
                "[invalidation] revalidation of %s failed: %s",
                serialize_key(failure.key),
                failure.error.message if failure.error else "unknown error",
            )
        sentry_breadcrumb(
            category="cache",
            message="write_invalidation",
            data={"revalidated": report.revalidated_count, "failed": len(report.failures)},
        )
        return report

    async def on_write_completed(self) -> InvalidationReport:
        """Revalidate statistics and all list pages after an upload/create."""
        return await self._fan_out(self.invalidate_lists(), self.invalidate_statistics())

    async def on_receipt_updated(self, receipt_id: str) -> InvalidationReport:
        detail_key = make_detail_key(receipt_id)
        return await self._fan_out(
            self.invalidate_lists(),
            self.invalidate_statistics(),
            self.store.invalidate_matching(lambda key: key == detail_key),
        )

    async def on_receipt_deleted(self, receipt_id: str) -> InvalidationReport:
        # the detail record no longer exists; drop it instead of refetching a 404
        self.store.evict(make_detail_key(receipt_id))
        return await self.on_write_completed()

    async def invalidate_all(self) -> InvalidationReport:
        return await self._fan_out(self.store.invalidate_matching(lambda key: True))
