"""Paginated, sortable, filterable receipt list bound to the shared cache.

The controller owns only the query state (page, page size, sort and the
raw filter form). Every state change computes a new list key and
re-subscribes; the rows themselves always come from the cache store.

While a new key is loading the previous page keeps being displayed
(``keep_previous_data``) and its subscription is held so the entry is
not evicted underneath the view. Snapshots delivered for a key that is
no longer current are ignored.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from fisboard.models.enums import SortField, SortOrder
from fisboard.models.schemas import ErrorInfo, Filters, PaginatedResult, ReceiptRead
from fisboard.services.cache import CacheSnapshot, CacheStore, Subscription
from fisboard.services.data_source import ReceiptDataSource
from fisboard.services.query_keys import ListKey, make_list_key, serialize_key
from fisboard.utils.validation import filters_to_query

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20


@dataclass(frozen=True)
class ListViewState:
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    sort_by: SortField = SortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    filters: Filters = field(default_factory=Filters)


class ListViewController:
    """Receipt list view: query state in, cached page out."""

    def __init__(
        self,
        store: CacheStore,
        data_source: ReceiptDataSource,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        sort_by: SortField | str = SortField.CREATED_AT,
        sort_order: SortOrder | str = SortOrder.DESC,
        filters: Filters | None = None,
        keep_previous_data: bool = True,
        enabled: bool = True,
        listener: Optional[Callable[["ListViewController"], None]] = None,
        **subscribe_options: Any,
    ) -> None:
        self.store = store
        self.data_source = data_source
        self.keep_previous_data = keep_previous_data
        self._listener = listener
        self._subscribe_options = subscribe_options
        initial = ListViewState(
            page=page,
            limit=limit,
            sort_by=SortField(sort_by),
            sort_order=SortOrder(sort_order),
            filters=filters or Filters(),
        )
        self._key = self._key_for(initial)
        self._state = initial
        self._enabled = enabled
        self._subscription: Optional[Subscription] = None
        self._previous: Optional[Subscription] = None
        self._snapshot: Optional[CacheSnapshot[PaginatedResult[ReceiptRead]]] = None
        self._placeholder: Optional[PaginatedResult[ReceiptRead]] = None
        if enabled:
            self._subscribe()

    # ------------------------------------------------------------------
    # State and derived values

    @property
    def state(self) -> ListViewState:
        return self._state

    @property
    def key(self) -> ListKey:
        return self._key

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def data(self) -> Optional[PaginatedResult[ReceiptRead]]:
        """Current page, or the previous one while the current key loads."""
        if self._snapshot is not None and self._snapshot.data is not None:
            return self._snapshot.data
        return self._placeholder if self.keep_previous_data else None

    @property
    def items(self) -> list[ReceiptRead]:
        return list(self.data.items) if self.data is not None else []

    @property
    def total_count(self) -> int:
        return self.data.total_count if self.data is not None else 0

    @property
    def total_pages(self) -> int:
        return self.data.total_pages if self.data is not None else 0

    @property
    def current_page(self) -> int:
        return self._state.page

    @property
    def has_next_page(self) -> bool:
        return self._state.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self._state.page > 1

    @property
    def is_loading(self) -> bool:
        return self.data is None and self._snapshot is not None and self._snapshot.is_validating

    @property
    def is_validating(self) -> bool:
        return self._snapshot is not None and self._snapshot.is_validating

    @property
    def error(self) -> Optional[ErrorInfo]:
        return self._snapshot.error if self._snapshot is not None else None

    @property
    def has_active_filters(self) -> bool:
        return self._state.filters.is_active

    # ------------------------------------------------------------------
    # Pagination

    def set_page(self, page: int) -> None:
        """Go to ``page``; ignored outside ``1..total_pages``."""
        known_pages = max(self.total_pages, 1)
        if page < 1 or page > known_pages:
            logger.debug("[list] ignoring page %s (total_pages=%s)", page, known_pages)
            return
        self._update(page=page)

    def go_to_next_page(self) -> None:
        if self.has_next_page:
            self.set_page(self._state.page + 1)

    def go_to_prev_page(self) -> None:
        if self.has_prev_page:
            self.set_page(self._state.page - 1)

    def go_to_first_page(self) -> None:
        self.set_page(1)

    def go_to_last_page(self) -> None:
        if self.total_pages > 0:
            self.set_page(self.total_pages)

    def set_limit(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("page size must be at least 1")
        self._update(limit=limit, page=1)

    # ------------------------------------------------------------------
    # Sorting

    def set_sort_by(self, sort_by: SortField | str) -> None:
        self._update(sort_by=SortField(sort_by), page=1)

    def set_sort_order(self, sort_order: SortOrder | str) -> None:
        self._update(sort_order=SortOrder(sort_order), page=1)

    def toggle_sort_order(self) -> None:
        self._update(sort_order=self._state.sort_order.toggled(), page=1)

    def sort_by_field(self, sort_by: SortField | str) -> None:
        """Header click: same column flips the order, a new column sorts descending."""
        sort_by = SortField(sort_by)
        if sort_by is self._state.sort_by:
            self.toggle_sort_order()
        else:
            self._update(sort_by=sort_by, sort_order=SortOrder.DESC, page=1)

    # ------------------------------------------------------------------
    # Filters

    def set_filters(self, **partial: Any) -> None:
        """Merge ``partial`` into the filter form and go back to page 1.

        Raises ``FilterValidationError`` and leaves the state untouched
        when the merged form is invalid.
        """
        filters = self._state.filters.merged(**partial)
        filters_to_query(filters)
        self._update(filters=filters, page=1)

    def clear_filters(self) -> None:
        self._update(filters=Filters(), page=1)

    # ------------------------------------------------------------------
    # Cache access

    async def refresh(self) -> Optional[PaginatedResult[ReceiptRead]]:
        """Refetch the current page regardless of freshness."""
        if not self._enabled:
            return self.data
        await self.store.mutate(self._key)
        return self.data

    async def mutate(self, data: PaginatedResult[ReceiptRead], revalidate: bool = True) -> None:
        """Publish ``data`` for the current key at once (optimistic update)."""
        await self.store.mutate(self._key, data, revalidate=revalidate)

    async def wait(self) -> Optional[PaginatedResult[ReceiptRead]]:
        """Wait for pending fetches on the current key (used by tests and scripts)."""
        if self._enabled:
            await self.store.wait_for(self._key)
        return self.data

    def set_enabled(self, enabled: bool) -> None:
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if enabled:
            self._subscribe()
        else:
            self._release()

    def close(self) -> None:
        self._enabled = False
        self._release()

    # ------------------------------------------------------------------
    # Internals

    @staticmethod
    def _key_for(state: ListViewState) -> ListKey:
        return make_list_key(
            {
                "page": state.page,
                "limit": state.limit,
                "sort_by": state.sort_by,
                "sort_order": state.sort_order,
                **filters_to_query(state.filters),
            }
        )

    def _update(self, **changes: Any) -> None:
        state = replace(self._state, **changes)
        key = self._key_for(state)
        self._state = state
        if key == self._key:
            return
        self._key = key
        if self._enabled:
            self._subscribe()

    def _subscribe(self) -> None:
        key = self._key
        if self._subscription is not None and self._subscription.key == key and self._subscription.active:
            return
        shown = self.data
        old = self._subscription
        self._subscription = self.store.subscribe(
            key,
            functools.partial(self.data_source.fetch_list, key.params),
            listener=self._on_snapshot,
            **self._subscribe_options,
        )
        self._snapshot = self._subscription.snapshot()
        has_data = self._snapshot is not None and self._snapshot.data is not None
        if old is not None:
            if self.keep_previous_data and not has_data:
                if self._previous is not None:
                    self._previous.close()
                self._previous = old
                self._placeholder = shown
            else:
                old.close()
        if has_data:
            self._drop_previous()
        logger.debug("[list] now showing %s", serialize_key(key))
        if has_data:
            self._clamp_page(self._snapshot.data)

    def _release(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self._drop_previous()

    def _drop_previous(self) -> None:
        if self._previous is not None:
            self._previous.close()
            self._previous = None
        self._placeholder = None

    def _on_snapshot(self, snapshot: CacheSnapshot[PaginatedResult[ReceiptRead]]) -> None:
        if snapshot.key != self._key:
            # response for a query the user already navigated away from
            return
        self._snapshot = snapshot
        data = snapshot.data
        if data is not None:
            self._drop_previous()
            if self._clamp_page(data):
                return
        if self._listener is not None:
            self._listener(self)

    def _clamp_page(self, data: PaginatedResult[ReceiptRead]) -> bool:
        """Move back to the last page when the result set shrank below the current one."""
        if 0 < data.total_pages < self._state.page:
            logger.info("[list] page %s out of range, clamping to %s", self._state.page, data.total_pages)
            self._update(page=data.total_pages)
            return True
        return False
