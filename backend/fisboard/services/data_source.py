"""Receipt data source over the hosted relational store.

Every public coroutine returns an :class:`ApiResponse` envelope and
never raises database errors past this boundary, so the cache layer
can treat a failure as a value. The adapter has no retry or caching
logic of its own; both live in ``fisboard.services.cache``.

Query contract used by the list view:

- ``search`` and ``record_no`` are case-insensitive substring matches
  on the record number (both apply when both are set)
- ``date_from``/``date_to`` bound ``event_time`` by calendar day, both
  inclusive
- ``min_amount``/``max_amount`` bound ``total``, both inclusive
- results are sorted by the requested field with ``id`` as tie-breaker
  so pagination is stable
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Mapping

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fisboard.core.database import AsyncSessionLocal
from fisboard.models.enums import ErrorKind, SortField, SortOrder
from fisboard.models.schemas import (
    ApiResponse,
    PaginatedResult,
    QueryParams,
    ReceiptCreate,
    ReceiptRead,
    ReceiptUpdate,
    Statistics,
)
from fisboard.models.tables import Receipt
from fisboard.services.query_keys import normalize_params

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    SortField.CREATED_AT: Receipt.created_at,
    SortField.UPDATED_AT: Receipt.updated_at,
    SortField.EVENT_TIME: Receipt.event_time,
    SortField.TOTAL: Receipt.total,
}

STATS_WINDOW_DAYS = 30


def _day_start(day: dt.date) -> dt.datetime:
    return dt.datetime.combine(day, dt.time.min, tzinfo=dt.timezone.utc)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ReceiptDataSource:
    """Async CRUD and query functions for receipts."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory or AsyncSessionLocal
        self._clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Queries

    @staticmethod
    def _list_conditions(params: QueryParams) -> list[Any]:
        conditions: list[Any] = []
        if params.search:
            conditions.append(Receipt.record_no.icontains(params.search, autoescape=True))
        if params.record_no:
            conditions.append(Receipt.record_no.icontains(params.record_no, autoescape=True))
        if params.date_from is not None:
            conditions.append(Receipt.event_time >= _day_start(params.date_from))
        if params.date_to is not None:
            conditions.append(Receipt.event_time < _day_start(params.date_to + dt.timedelta(days=1)))
        if params.min_amount is not None:
            conditions.append(Receipt.total >= params.min_amount)
        if params.max_amount is not None:
            conditions.append(Receipt.total <= params.max_amount)
        return conditions

    async def fetch_list(
        self, params: QueryParams | Mapping[str, Any] | None = None
    ) -> ApiResponse[PaginatedResult[ReceiptRead]]:
        """Return one page of receipts matching ``params`` with an exact total count."""
        if not isinstance(params, QueryParams):
            try:
                params = QueryParams(**normalize_params(params))
            except ValidationError as exc:
                return ApiResponse.fail(str(exc), kind=ErrorKind.VALIDATION, code="INVALID_QUERY")

        conditions = self._list_conditions(params)
        column = _SORT_COLUMNS[params.sort_by]
        ordering = column.asc() if params.sort_order is SortOrder.ASC else column.desc()
        try:
            async with self._session_factory() as session:
                count_query = select(func.count(Receipt.id)).where(*conditions)
                total_count = (await session.execute(count_query)).scalar_one()
                page_query = (
                    select(Receipt)
                    .where(*conditions)
                    .order_by(ordering, Receipt.id)
                    .offset(params.offset)
                    .limit(params.limit)
                )
                rows = (await session.execute(page_query)).scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("[data_source] list query failed: %s", exc)
            return ApiResponse.fail(f"Receipt list could not be loaded: {exc}")

        items = [ReceiptRead.model_validate(row) for row in rows]
        page = PaginatedResult[ReceiptRead].build(items, int(total_count or 0), params.page, params.limit)
        return ApiResponse[PaginatedResult[ReceiptRead]].ok(page)

    async def fetch_stats(self) -> ApiResponse[Statistics]:
        """Aggregate totals, today's uploads and the trailing daily average."""
        now = self._clock()
        today_start = _day_start(now.date())
        tomorrow_start = today_start + dt.timedelta(days=1)
        window_start = now - dt.timedelta(days=STATS_WINDOW_DAYS)
        try:
            async with self._session_factory() as session:
                totals = (
                    await session.execute(
                        select(
                            func.count(Receipt.id),
                            func.coalesce(func.sum(Receipt.total), 0.0),
                            func.coalesce(func.sum(Receipt.total_tax), 0.0),
                        )
                    )
                ).one()
                today_records = (
                    await session.execute(
                        select(func.count(Receipt.id)).where(
                            Receipt.created_at >= today_start,
                            Receipt.created_at < tomorrow_start,
                        )
                    )
                ).scalar_one()
                recent_records = (
                    await session.execute(
                        select(func.count(Receipt.id)).where(Receipt.created_at >= window_start)
                    )
                ).scalar_one()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("[data_source] stats query failed: %s", exc)
            return ApiResponse.fail(f"Statistics could not be loaded: {exc}")

        total_records, total_amount, total_tax = totals
        stats = Statistics.from_totals(
            total_records=int(total_records or 0),
            total_amount=float(total_amount or 0),
            total_tax=float(total_tax or 0),
            today_records=int(today_records or 0),
            recent_records=int(recent_records or 0),
            window_days=STATS_WINDOW_DAYS,
        )
        return ApiResponse[Statistics].ok(stats)

    async def fetch_receipt(self, receipt_id: str) -> ApiResponse[ReceiptRead]:
        try:
            async with self._session_factory() as session:
                row = await session.get(Receipt, receipt_id)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("[data_source] receipt %s lookup failed: %s", receipt_id, exc)
            return ApiResponse.fail(f"Receipt could not be loaded: {exc}")
        if row is None:
            return ApiResponse.fail(f"Receipt {receipt_id} not found", kind=ErrorKind.VALIDATION, code="NOT_FOUND")
        return ApiResponse[ReceiptRead].ok(ReceiptRead.model_validate(row))

    # ------------------------------------------------------------------
    # Writes

    async def create_receipt(self, payload: ReceiptCreate) -> ApiResponse[ReceiptRead]:
        values = payload.model_dump(exclude_none=True)
        now = self._clock()
        receipt = Receipt(created_at=now, updated_at=now, **values)
        try:
            async with self._session_factory() as session:
                session.add(receipt)
                await session.commit()
                await session.refresh(receipt)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("[data_source] receipt insert failed: %s", exc)
            return ApiResponse.fail(f"Receipt could not be saved: {exc}")
        return ApiResponse[ReceiptRead].ok(ReceiptRead.model_validate(receipt))

    async def update_receipt(self, receipt_id: str, changes: ReceiptUpdate) -> ApiResponse[ReceiptRead]:
        values = changes.model_dump(exclude_unset=True)
        try:
            async with self._session_factory() as session:
                receipt = await session.get(Receipt, receipt_id)
                if receipt is None:
                    return ApiResponse.fail(
                        f"Receipt {receipt_id} not found", kind=ErrorKind.VALIDATION, code="NOT_FOUND"
                    )
                for name, value in values.items():
                    setattr(receipt, name, value)
                receipt.updated_at = self._clock()
                await session.commit()
                await session.refresh(receipt)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("[data_source] receipt %s update failed: %s", receipt_id, exc)
            return ApiResponse.fail(f"Receipt could not be updated: {exc}")
        return ApiResponse[ReceiptRead].ok(ReceiptRead.model_validate(receipt))

    async def delete_receipt(self, receipt_id: str) -> ApiResponse[bool]:
        try:
            async with self._session_factory() as session:
                receipt = await session.get(Receipt, receipt_id)
                if receipt is None:
                    return ApiResponse.fail(
                        f"Receipt {receipt_id} not found", kind=ErrorKind.VALIDATION, code="NOT_FOUND"
                    )
                await session.delete(receipt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("[data_source] receipt %s delete failed: %s", receipt_id, exc)
            return ApiResponse.fail(f"Receipt could not be deleted: {exc}")
        return ApiResponse[bool].ok(True)
