"""Generic paginated fetching over cursor- and offset-style APIs."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from errors import PaginationError, is_transient_error
from models import Page
from retry_guard import RetryPolicy, with_retry

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)

PageFetcher = Callable[[str | None], Awaitable[Page[T]]]


async def fetch_all(
    fetch_page: PageFetcher[T],
    *,
    max_items: int | None = None,
    on_progress: Callable[[int, int | None], None] | None = None,
    retry_policy: RetryPolicy | None = None,
    is_transient: Callable[[BaseException], bool] = is_transient_error,
    label: str = "page",
) -> list[T]:
    """Follow continuation cursors until the record set is exhausted.

    Items are returned in server order. When ``max_items`` is set the final
    page is trimmed and no further pages are requested. When ``retry_policy``
    is given each page request goes through the retry guard; errors that are
    not retried propagate to the caller.

    Args:
        fetch_page: Coroutine function taking the current cursor (None for the
            first page) and returning a ``Page``.
        max_items: Optional cap on the number of items returned.
        on_progress: Called with (items so far, total hint) after each page.
        retry_policy: Optional retry policy applied to every page request.
        is_transient: Classifier passed to the retry guard.
        label: Name used in log lines.
    """
    items: list[T] = []
    cursor: str | None = None
    seen_cursors: set[str] = set()
    page_number = 0

    if max_items is not None and max_items <= 0:
        return items

    while True:
        page_number += 1
        current = cursor
        if retry_policy is not None:
            page = await with_retry(
                lambda: fetch_page(current),
                retry_policy,
                is_transient,
                label=f"{label} {page_number}",
            )
        else:
            page = await fetch_page(current)

        batch = page.items
        if max_items is not None and len(items) + len(batch) > max_items:
            batch = batch[: max_items - len(items)]
        items.extend(batch)

        if on_progress is not None:
            on_progress(len(items), page.total_count)
        LOGGER.debug("Fetched %s %s(s) on page %s", len(batch), label, page_number)

        if max_items is not None and len(items) >= max_items:
            LOGGER.info("Reached maximum of %s %s(s)", max_items, label)
            break
        if page.next_cursor is None:
            break
        if page.next_cursor in seen_cursors:
            raise PaginationError(f"Cursor {page.next_cursor!r} repeated while fetching {label}s")
        seen_cursors.add(page.next_cursor)
        cursor = page.next_cursor

    return items


def offset_pages(
    fetch_items: Callable[[int, int], Awaitable[list[T]]],
    page_size: int,
    *,
    start: int = 0,
    by_page_number: bool = False,
) -> PageFetcher[T]:
    """Adapt an offset or page-number API to the cursor contract.

    Only for APIs that expose no explicit "has more" signal: a page shorter
    than ``page_size`` is taken as the last one.

    Args:
        fetch_items: Coroutine taking (offset or page number, page size) and
            returning the items of that page.
        page_size: Number of items requested per page.
        start: First offset (or first page number when ``by_page_number``).
        by_page_number: Advance by one per page instead of by ``page_size``.
    """
    if page_size < 1:
        raise ValueError("page_size must be >= 1")

    async def fetch_page(cursor: str | None) -> Page[T]:
        position = start if cursor is None else int(cursor)
        batch = await fetch_items(position, page_size)
        if len(batch) < page_size:
            return Page(items=batch, next_cursor=None)
        step = 1 if by_page_number else page_size
        return Page(items=batch, next_cursor=str(position + step))

    return fetch_page
