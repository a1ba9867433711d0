import asyncio

import pytest
import requests

from errors import PaginationError
from models import Page
from paginator import fetch_all, offset_pages
from retry_guard import RetryPolicy

PAGE_SIZE = 5


def _offset_source(total: int):
    """Offset-style API over ``total`` numbered items; records every request."""
    data = list(range(total))
    requests_made: list[int] = []

    async def fetch_items(offset: int, limit: int) -> list[int]:
        requests_made.append(offset)
        return data[offset:offset + limit]

    return fetch_items, requests_made


def _cursor_source(pages: list[list[str]]):
    """Cursor-style API: cursor ``"i"`` returns page i, last page has no cursor."""
    calls: list[str | None] = []

    async def fetch_page(cursor: str | None) -> Page[str]:
        calls.append(cursor)
        index = int(cursor or "0")
        next_cursor = str(index + 1) if index + 1 < len(pages) else None
        return Page(items=pages[index], next_cursor=next_cursor, total_count=sum(len(p) for p in pages))

    return fetch_page, calls


@pytest.mark.parametrize(
    "total",
    [0, 3, PAGE_SIZE, 3 * PAGE_SIZE, 3 * PAGE_SIZE + 2],
    ids=["empty", "short", "exactly-one-page", "whole-pages", "whole-pages-plus-rest"],
)
def test_offset_pages_return_all_items_in_order(total: int) -> None:
    fetch_items, offsets = _offset_source(total)

    items = asyncio.run(fetch_all(offset_pages(fetch_items, PAGE_SIZE)))

    assert items == list(range(total))
    # A full page always needs one more request to see the short (or empty) page.
    assert len(offsets) == total // PAGE_SIZE + 1
    assert offsets == [PAGE_SIZE * i for i in range(len(offsets))]


def test_offset_pages_by_page_number() -> None:
    seen: list[int] = []

    async def fetch_items(page: int, size: int) -> list[int]:
        seen.append(page)
        return [page] * (size if page < 3 else 1)

    items = asyncio.run(fetch_all(offset_pages(fetch_items, 2, start=1, by_page_number=True)))

    assert seen == [1, 2, 3]
    assert items == [1, 1, 2, 2, 3]


def test_offset_pages_rejects_zero_page_size() -> None:
    fetch_items, _ = _offset_source(1)
    with pytest.raises(ValueError):
        offset_pages(fetch_items, 0)


def test_cursor_pages_three_pages_three_calls() -> None:
    fetch_page, calls = _cursor_source([["a", "b"], ["c", "d"], ["e", "f"]])

    items = asyncio.run(fetch_all(fetch_page))

    assert items == ["a", "b", "c", "d", "e", "f"]
    assert calls == [None, "1", "2"]


def test_empty_first_page_is_not_an_error() -> None:
    fetch_page, calls = _cursor_source([[]])

    assert asyncio.run(fetch_all(fetch_page)) == []
    assert calls == [None]


def test_max_items_trims_final_page_and_stops() -> None:
    fetch_page, calls = _cursor_source([["a", "b"], ["c", "d"], ["e", "f"]])

    items = asyncio.run(fetch_all(fetch_page, max_items=3))

    assert items == ["a", "b", "c"]
    assert calls == [None, "1"]


def test_max_items_zero_makes_no_calls() -> None:
    fetch_page, calls = _cursor_source([["a"]])

    assert asyncio.run(fetch_all(fetch_page, max_items=0)) == []
    assert calls == []


def test_progress_reports_running_count_and_total() -> None:
    fetch_page, _ = _cursor_source([["a", "b"], ["c"]])
    progress: list[tuple[int, int | None]] = []

    asyncio.run(fetch_all(fetch_page, on_progress=lambda done, total: progress.append((done, total))))

    assert progress == [(2, 3), (3, 3)]


def test_repeated_cursor_raises() -> None:
    async def fetch_page(cursor: str | None) -> Page[int]:
        return Page(items=[1], next_cursor="same")

    with pytest.raises(PaginationError, match="same"):
        asyncio.run(fetch_all(fetch_page))


def test_transient_failure_on_second_page_is_retried() -> None:
    """3 pages of 2 items, page 2 fails once with a 503: 4 calls in total."""
    pages = {None: (["a", "b"], "p2"), "p2": (["c", "d"], "p3"), "p3": (["e", "f"], None)}
    calls: list[str | None] = []
    failed = {"p2": False}

    async def fetch_page(cursor: str | None) -> Page[str]:
        calls.append(cursor)
        if cursor == "p2" and not failed["p2"]:
            failed["p2"] = True
            response = requests.Response()
            response.status_code = 503
            raise requests.HTTPError("503 Service Unavailable", response=response)
        items, next_cursor = pages[cursor]
        return Page(items=items, next_cursor=next_cursor)

    policy = RetryPolicy(max_retries=3, base_delay=0, max_delay=0)
    items = asyncio.run(fetch_all(fetch_page, retry_policy=policy))

    assert items == ["a", "b", "c", "d", "e", "f"]
    assert calls == [None, "p2", "p2", "p3"]


def test_permanent_failure_propagates() -> None:
    async def fetch_page(cursor: str | None) -> Page[str]:
        if cursor is None:
            return Page(items=["a"], next_cursor="next")
        response = requests.Response()
        response.status_code = 401
        raise requests.HTTPError("401 Unauthorized", response=response)

    policy = RetryPolicy(max_retries=3, base_delay=0, max_delay=0)
    with pytest.raises(requests.HTTPError):
        asyncio.run(fetch_all(fetch_page, retry_policy=policy))
