# src/sluice/engine/pagination.py
"""Pagination strategies for collectors.

A Pager decides the query parameters of each page and whether another page
follows. Collectors call first() once per item, then next() after every
non-empty page; None ends the item's sequence. An empty page always ends it
without asking the pager.

Callers swap pagers without touching the rest of the collector:

    TotalPagesPager(total_pages_from_link_header)   GitHub style Link: rel="last"
    TotalPagesPager(total_pages_from_count("total_count"))
    NextCursorPager(cursor_from_path("meta.next_cursor"))
    PageNumberPager()                               stop on a short page
    SinglePagePager()                               one request per item
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

import httpx

TotalPagesFn = Callable[[httpx.Response, Any, int], "int | None"]
CursorFn = Callable[[httpx.Response, Any], "str | None"]

_MISSING = object()


def dig(body: Any, path: str | None, default: Any = _MISSING) -> Any:
    """Follow a dotted path (`data.items`) through nested dicts.

    An empty or None path returns body itself.

    Raises:
        KeyError: If a segment is missing and no default was given
    """
    if not path:
        return body
    current = body
    for segment in path.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif default is not _MISSING:
            return default
        else:
            raise KeyError(f"{path!r} not found in response body (missing {segment!r})")
    return current


@dataclass(frozen=True)
class PageState:
    """Position within one item's page sequence.

    Attributes:
        number: 1-based page ordinal (also the raw-store page key)
        size: Requested page size
        offset: Items requested before this page
        cursor: Opaque cursor from the previous page (cursor pagination)
        total_pages: Total pages, once known (total-pages pagination)
    """

    number: int
    size: int
    offset: int = 0
    cursor: str | None = None
    total_pages: int | None = None

    def advance(self, **changes: Any) -> PageState:
        return replace(self, number=self.number + 1, offset=self.offset + self.size, **changes)


class Pager(ABC):
    """Base for pagination strategies."""

    def __init__(self, *, size_param: str | None = "per_page", max_pages: int | None = None) -> None:
        if max_pages is not None and max_pages < 1:
            raise ValueError(f"max_pages must be >= 1, got {max_pages}")
        self.size_param = size_param
        self.max_pages = max_pages

    def first(self, size: int) -> PageState:
        return PageState(number=1, size=size)

    def params(self, state: PageState) -> dict[str, Any]:
        """Query parameters for the page at `state`."""
        return {self.size_param: state.size} if self.size_param else {}

    def next(self, state: PageState, response: httpx.Response, body: Any, items: Sequence[Any]) -> PageState | None:
        """State of the following page, or None when the sequence is complete."""
        if self.max_pages is not None and state.number >= self.max_pages:
            return None
        return self._next(state, response, body, items)

    @abstractmethod
    def _next(self, state: PageState, response: httpx.Response, body: Any, items: Sequence[Any]) -> PageState | None: ...


class SinglePagePager(Pager):
    """Exactly one request per item."""

    def _next(self, state: PageState, response: httpx.Response, body: Any, items: Sequence[Any]) -> PageState | None:
        return None


class PageNumberPager(Pager):
    """page=N pagination that ends on a page shorter than the page size."""

    def __init__(self, *, page_param: str = "page", size_param: str | None = "per_page", max_pages: int | None = None) -> None:
        super().__init__(size_param=size_param, max_pages=max_pages)
        self.page_param = page_param

    def params(self, state: PageState) -> dict[str, Any]:
        return {**super().params(state), self.page_param: state.number}

    def _next(self, state: PageState, response: httpx.Response, body: Any, items: Sequence[Any]) -> PageState | None:
        if len(items) < state.size:
            return None
        return state.advance()


class TotalPagesPager(PageNumberPager):
    """page=N pagination bounded by a total read from the first response.

    When the first response carries no total, falls back to the short-page
    rule of PageNumberPager.
    """

    def __init__(
        self,
        total_pages: TotalPagesFn,
        *,
        page_param: str = "page",
        size_param: str | None = "per_page",
        max_pages: int | None = None,
    ) -> None:
        super().__init__(page_param=page_param, size_param=size_param, max_pages=max_pages)
        self._total_pages = total_pages

    def _next(self, state: PageState, response: httpx.Response, body: Any, items: Sequence[Any]) -> PageState | None:
        total = state.total_pages
        if state.number == 1:
            total = self._total_pages(response, body, state.size)
        if total is None:
            return super()._next(state, response, body, items)
        if state.number >= total:
            return None
        return state.advance(total_pages=total)


class NextCursorPager(Pager):
    """Cursor pagination: each response names the cursor of the next page."""

    def __init__(
        self,
        next_cursor: CursorFn,
        *,
        cursor_param: str = "cursor",
        size_param: str | None = "per_page",
        max_pages: int | None = None,
    ) -> None:
        super().__init__(size_param=size_param, max_pages=max_pages)
        self._next_cursor = next_cursor
        self.cursor_param = cursor_param

    def params(self, state: PageState) -> dict[str, Any]:
        params = super().params(state)
        if state.cursor is not None:
            params[self.cursor_param] = state.cursor
        return params

    def _next(self, state: PageState, response: httpx.Response, body: Any, items: Sequence[Any]) -> PageState | None:
        cursor = self._next_cursor(response, body)
        # A cursor that does not move would loop forever
        if not cursor or cursor == state.cursor:
            return None
        return state.advance(cursor=cursor)


def total_pages_from_link_header(response: httpx.Response, body: Any, size: int) -> int | None:
    """Total pages from an RFC 8288 Link header with rel="last".

    A response without next/last links is the only page.
    """
    links = response.links
    last = links.get("last")
    if last is not None:
        page = httpx.URL(last["url"]).params.get("page")
        if page is not None and page.isdigit():
            return int(page)
        return None
    if "next" in links:
        return None
    return 1


def total_pages_from_count(count_path: str) -> TotalPagesFn:
    """Total pages from an item count in the body (`total_count`)."""

    def total_pages(response: httpx.Response, body: Any, size: int) -> int | None:
        count = dig(body, count_path, None)
        if not isinstance(count, int) or isinstance(count, bool):
            return None
        return max(1, math.ceil(count / size))

    return total_pages


def cursor_from_path(path: str) -> CursorFn:
    """Next cursor from a dotted path in the body."""

    def next_cursor(response: httpx.Response, body: Any) -> str | None:
        value = dig(body, path, None)
        return str(value) if value not in (None, "") else None

    return next_cursor
