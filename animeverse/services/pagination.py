"""Paged browsing cursors for episodes, the catalog and search results."""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from animeverse.core.api_client import ContentServiceClient
from animeverse.core.errors import ClientError
from animeverse.core.scope import ViewScope
from animeverse.core.settlement import Settlement
from animeverse.schemas import AnimeSummary, Episode

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PageResult(Generic[T]):
    """Items of one page plus the server's current page count."""

    items: list[T]
    total_pages: int

    @classmethod
    def from_total_items(cls, items: list[T], total_items: int, page_size: int) -> "PageResult[T]":
        return cls(items=items, total_pages=math.ceil(total_items / page_size) if page_size else 0)

    @classmethod
    def from_sequence(cls, items: Sequence[T], page: int, page_size: int) -> "PageResult[T]":
        """Slice one page out of a list that is already fully loaded."""
        start = (page - 1) * page_size
        return cls.from_total_items(list(items[start:start + page_size]), len(items), page_size)


@dataclass(frozen=True)
class PaginationState(Generic[T]):
    """Snapshot of a cursor for rendering."""

    items: list[T] = field(default_factory=list)
    current_page: int = 1
    total_pages: int = 1
    page_size: int = 20
    is_loading: bool = False
    error: str | None = None


PageFetcher = Callable[[int, int], Awaitable[PageResult[T]]]


class PaginationCursor(Generic[T]):
    """
    Drives "fetch page N of resource R" for one browsing view.

    Only one fetch may be outstanding at a time; a request made while one is
    in flight is ignored rather than queued, so a slow earlier response can
    never overwrite a later one.
    """

    def __init__(
        self,
        fetch: PageFetcher,
        page_size: int = 20,
        total_pages: int = 1,
        scope: ViewScope | None = None,
        name: str = "pages",
    ):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._fetch = fetch
        self.page_size = page_size
        self.scope = scope
        self.name = name
        self._items: list[T] = []
        self._current_page = 1
        self._total_pages = max(1, total_pages)
        self._is_loading = False
        self._error: ClientError | None = None

    @property
    def items(self) -> list[T]:
        return list(self._items)

    @property
    def current_page(self) -> int:
        return self._current_page

    @property
    def total_pages(self) -> int:
        return self._total_pages

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> ClientError | None:
        return self._error

    @property
    def has_next(self) -> bool:
        return self._current_page < self._total_pages

    @property
    def has_previous(self) -> bool:
        return self._current_page > 1

    @property
    def state(self) -> PaginationState[T]:
        return PaginationState(
            items=list(self._items),
            current_page=self._current_page,
            total_pages=self._total_pages,
            page_size=self.page_size,
            is_loading=self._is_loading,
            error=self._error.message if self._error else None,
        )

    def _alive(self) -> bool:
        return self.scope is None or self.scope.alive

    async def request_page(self, page: int) -> Settlement[PaginationState[T]]:
        """Fetch one page. Out-of-range or overlapping requests are no-ops."""
        if page < 1 or page > self._total_pages or self._is_loading:
            logger.debug(
                f"[{self.name}] Ignoring request for page {page} "
                f"(total={self._total_pages}, loading={self._is_loading})"
            )
            return Settlement.noop(self.state)

        self._is_loading = True
        failure: ClientError | None = None
        try:
            result = await self._fetch(page, self.page_size)
            total = max(1, result.total_pages)

            # The listing shrank under us: land on the new last page instead
            if page > total and self._alive():
                logger.info(f"[{self.name}] Page {page} is past the end ({total} pages), clamping")
                page = total
                result = await self._fetch(page, self.page_size)
                total = max(1, result.total_pages)
                page = min(page, total)
        except ClientError as e:
            failure = e
        finally:
            self._is_loading = False

        if not self._alive():
            logger.debug(f"[{self.name}] View closed, dropping page {page}")
            return Settlement.noop()

        if failure is not None:
            logger.warning(f"[{self.name}] Failed to load page {page}: {failure.message}")
            self._error = failure
            return Settlement.failure(failure, self.state)

        self._items = list(result.items)
        self._current_page = page
        self._total_pages = total
        self._error = None
        return Settlement.success(self.state)

    async def load(self) -> Settlement[PaginationState[T]]:
        return await self.request_page(1)

    async def refresh(self) -> Settlement[PaginationState[T]]:
        return await self.request_page(self._current_page)

    async def next_page(self) -> Settlement[PaginationState[T]]:
        return await self.request_page(self._current_page + 1)

    async def previous_page(self) -> Settlement[PaginationState[T]]:
        return await self.request_page(self._current_page - 1)


def page_window(current_page: int, total_pages: int, size: int = 5) -> list[int | None]:
    """
    Page numbers to show as buttons, with None marking an ellipsis.

    The first and last pages are always reachable: page_window(6, 10) gives
    [1, None, 4, 5, 6, 7, 8, None, 10].
    """
    if total_pages <= size:
        return list(range(1, total_pages + 1))

    start = max(1, current_page - size // 2)
    end = min(total_pages, start + size - 1)
    if end - start + 1 < size:
        start = max(1, end - size + 1)

    window: list[int | None] = []
    if start > 1:
        window.append(1)
        if start > 2:
            window.append(None)
    window.extend(range(start, end + 1))
    if end < total_pages:
        if end < total_pages - 1:
            window.append(None)
        window.append(total_pages)
    return window


# ============ Fetchers ============

def episode_pages(client: ContentServiceClient, anime_id: int | str) -> PageFetcher:
    """Server-side paged episode list of one anime."""

    async def fetch(page: int, page_size: int) -> PageResult[Episode]:
        data = await client.get_paginated_episodes(anime_id, page, page_size)
        return PageResult.from_total_items(data.episodios, data.total_episodios, page_size)

    return fetch


def catalog_pages(client: ContentServiceClient) -> PageFetcher:
    """Full catalog. The server fixes the page size, so page_size is ignored."""

    async def fetch(page: int, page_size: int) -> PageResult[AnimeSummary]:
        data = await client.get_paginated_animes(page)
        return PageResult(items=data.animes, total_pages=data.total_pages)

    return fetch


def search_pages(client: ContentServiceClient, term: str, limit: int = 20) -> PageFetcher:
    """
    Search results, paged locally.

    The search endpoint returns one capped list, so it is fetched on the
    first request and later pages are sliced from it.
    """
    cache: dict[str, Any] = {}

    async def fetch(page: int, page_size: int) -> PageResult[AnimeSummary]:
        if "results" not in cache:
            cache["results"] = await client.search_animes(term, limit)
        return PageResult.from_sequence(cache["results"], page, page_size)

    return fetch
