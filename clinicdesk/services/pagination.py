"""Paginated list controller shared by the patient and appointment views."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from clinicdesk.errors import ApiError, SessionExpiredError
from clinicdesk.models.page import PageResult
from clinicdesk.notifications import Notifier
from clinicdesk.services.date_range import DateRange, FilterState
from clinicdesk.services.debounce import Debouncer

logger = logging.getLogger(__name__)

T = TypeVar("T")

ELLIPSIS = "..."
MAX_VISIBLE_PAGES = 7
DEFAULT_PAGE_SIZES: tuple[int, ...] = (5, 10, 20, 50)


def visible_pages(current: int, total: int) -> list[int | str]:
    """Page numbers to render, with gaps collapsed into ``ELLIPSIS``.

    Up to ``MAX_VISIBLE_PAGES`` pages are all shown. Beyond that the first
    and last pages plus ``current - 1 .. current + 1`` are shown and every
    run of hidden pages becomes a single ellipsis.
    """

    total = max(1, total)
    current = min(max(1, current), total)
    if total <= MAX_VISIBLE_PAGES:
        return list(range(1, total + 1))

    shown = sorted({1, total} | set(range(max(1, current - 1), min(total, current + 1) + 1)))
    pages: list[int | str] = []
    previous = 0
    for page in shown:
        if previous and page - previous > 1:
            pages.append(ELLIPSIS)
        pages.append(page)
        previous = page
    return pages


def total_pages_for(total_items: int, items_per_page: int) -> int:
    return max(1, math.ceil(max(0, total_items) / max(1, items_per_page)))


def page_window(page: int, items_per_page: int, total_items: int) -> tuple[int, int]:
    """Return the 1-based ``(first, last)`` item numbers shown on ``page``."""

    if total_items <= 0:
        return 0, 0
    first = (page - 1) * items_per_page + 1
    return min(first, total_items), min(page * items_per_page, total_items)


@dataclass(frozen=True)
class ListQuery:
    page: int
    limit: int
    search: str = ""
    date_range: DateRange | None = None
    owner_id: str | None = None

    def as_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"page": self.page, "limit": self.limit}
        if self.search:
            params["query"] = self.search
        if self.date_range is not None:
            params.update(self.date_range.as_params())
        return params


def build_query(
    page: int,
    page_size: int,
    filter_state: FilterState | None = None,
    search_term: str = "",
    owner_id: str | None = None,
) -> ListQuery:
    """Map the view state tuple onto the parameters of one list request."""

    return ListQuery(
        page=page,
        limit=page_size,
        search=search_term.strip(),
        date_range=filter_state.date_range if filter_state is not None else None,
        owner_id=owner_id,
    )


Fetcher = Callable[[ListQuery], Awaitable[PageResult[T]]]


class PaginatedListController(Generic[T]):
    """Drive paging, search and filtering of one remote list.

    Every fetch is tagged with a sequence number; only the response to the
    most recently issued fetch may change the visible list.
    """

    def __init__(
        self,
        fetcher: Fetcher[T],
        *,
        name: str = "list",
        items_per_page: int = 10,
        page_size_options: Sequence[int] = DEFAULT_PAGE_SIZES,
        debounce_seconds: float = 0.5,
        notifier: Notifier | None = None,
        filter_state: FilterState | None = None,
    ) -> None:
        if items_per_page not in page_size_options:
            raise ValueError(f"items_per_page must be one of {list(page_size_options)}")
        self.name = name
        self.page_size_options = tuple(page_size_options)
        self.page = 1
        self.items_per_page = items_per_page
        self.total_pages = 1
        self.total_items = 0
        self.search_term = ""
        self.filter_state = filter_state
        self.owner_id: str | None = None
        self.items: list[T] = []
        self.loading = False
        self.error: str | None = None
        self._fetcher = fetcher
        self._notifier = notifier
        self._debouncer = Debouncer(debounce_seconds)
        self._issued = 0
        self._closed = False

    def query(self) -> ListQuery:
        return build_query(
            self.page,
            self.items_per_page,
            self.filter_state,
            self.search_term,
            self.owner_id,
        )

    async def refresh(self) -> bool:
        """Fetch the current page; return whether the result was applied."""

        self._issued += 1
        seq = self._issued
        query = self.query()
        self.loading = True
        logger.debug("fetching %s page", self.name, extra={"seq": seq, "params": query.as_params()})
        try:
            result = await self._fetcher(query)
        except SessionExpiredError:
            if seq == self._issued:
                self._reset_items()
                self.loading = False
            raise
        except ApiError as exc:
            if seq != self._issued:
                logger.debug("discarding stale %s failure", self.name, extra={"seq": seq})
                return False
            self._reset_items()
            self.error = exc.message
            self.loading = False
            logger.warning(
                "%s fetch failed", self.name, extra={"seq": seq, "error": exc.message}
            )
            if self._notifier is not None:
                self._notifier.error(f"Failed to load {self.name}")
            return False

        if seq != self._issued:
            logger.debug("discarding stale %s response", self.name, extra={"seq": seq})
            return False

        if self.page > max(1, result.total_pages):
            # the list shrank under the current page, e.g. its last row was deleted
            logger.debug(
                "%s page out of range, refetching last page",
                self.name,
                extra={"seq": seq, "page": self.page, "total_pages": result.total_pages},
            )
            self.page = max(1, result.total_pages)
            return await self.refresh()

        self.items = list(result.items)
        self.total_pages = max(1, result.total_pages)
        self.total_items = max(result.total_items, len(result.items))
        self.error = None
        self.loading = False
        return True

    async def set_page(self, page: int) -> bool:
        if page < 1 or page > self.total_pages:
            return False
        self.page = page
        await self.refresh()
        return True

    async def set_items_per_page(self, items_per_page: int) -> None:
        if items_per_page not in self.page_size_options:
            raise ValueError(f"items_per_page must be one of {list(self.page_size_options)}")
        self.items_per_page = items_per_page
        self.page = 1
        await self.refresh()

    async def set_filter(self, filter_state: FilterState | None) -> None:
        self.filter_state = filter_state
        self.page = 1
        await self.refresh()

    async def set_owner(self, owner_id: str | None) -> None:
        self.owner_id = owner_id
        self.page = 1
        await self.refresh()

    def set_search_term(self, term: str) -> None:
        """Record a search term and fetch page 1 after the quiet period.

        Must be called from a running event loop. Clearing the term fetches
        without waiting.
        """

        self.search_term = term
        self.page = 1
        delay = None if term.strip() else 0
        self._debouncer.schedule(self._debounced_refresh, delay=delay)

    async def _debounced_refresh(self) -> None:
        if self._closed:
            return
        await self.refresh()

    @property
    def search_pending(self) -> bool:
        return self._debouncer.pending

    async def wait_for_search(self) -> None:
        await self._debouncer.wait()

    def clear(self) -> None:
        """Drop the visible list and invalidate any fetch in flight."""

        self._issued += 1
        self._debouncer.cancel()
        self._reset_items()
        self.loading = False

    def close(self) -> None:
        self._closed = True
        self.clear()

    def _reset_items(self) -> None:
        self.page = 1
        self.items = []
        self.total_pages = 1
        self.total_items = 0

    def snapshot(self, serialize: Callable[[T], Any] | None = None) -> dict[str, Any]:
        first, last = page_window(self.page, self.items_per_page, self.total_items)
        items = [serialize(item) for item in self.items] if serialize else list(self.items)
        return {
            "items": items,
            "page": self.page,
            "itemsPerPage": self.items_per_page,
            "pageSizeOptions": list(self.page_size_options),
            "totalPages": self.total_pages,
            "totalItems": self.total_items,
            "visiblePages": visible_pages(self.page, self.total_pages),
            "showing": {"from": first, "to": last, "of": self.total_items},
            "search": self.search_term,
            "filter": self.filter_state.as_dict() if self.filter_state else None,
            "loading": self.loading,
            "error": self.error,
        }
