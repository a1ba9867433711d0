import asyncio
from datetime import date
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests

from gh2md import (
    EVENTS_PAGE_LIMIT,
    PAGE_SIZE,
    DailyActivity,
    export_activity,
    fetch_starred,
    parse_args,
    render_day,
    search_pages,
)
from models import DateRange
from retry_guard import RetryPolicy

_RANGE = DateRange(start=date(2024, 3, 1), end=date(2024, 3, 2))
_NO_WAIT = RetryPolicy(max_retries=2, base_delay=0, max_delay=0)

_PR = {
    "title": "Add exporter",
    "html_url": "https://github.com/octo/repo/pull/7",
    "repository_url": "https://api.github.com/repos/octo/repo",
    "created_at": "2024-03-01T09:00:00Z",
    "closed_at": "2024-03-01T12:00:00Z",
    "pull_request": {"merged_at": "2024-03-01T12:00:00Z"},
}
_ISSUE = {
    "title": "Exporter crashes",
    "html_url": "https://github.com/octo/repo/issues/8",
    "repository_url": "https://api.github.com/repos/octo/repo",
    "created_at": "2024-03-02T08:00:00Z",
    "state": "open",
}
_COMMIT = {
    "sha": "abc1234def",
    "html_url": "https://github.com/octo/repo/commit/abc1234def",
    "repository": {"full_name": "octo/repo"},
    "commit": {"message": "Fix paging\n\nLonger body", "author": {"date": "2024-03-01T15:30:00Z"}},
}
_COMMIT_DETAILS = {
    "files": [
        {"filename": "src/app.py", "status": "modified", "additions": 3, "deletions": 1, "patch": "@@ -1 +1 @@\n-a\n+b"},
        {"filename": "package-lock.json", "status": "modified", "additions": 900, "deletions": 800, "patch": "noise"},
    ]
}
_EVENTS = [
    {"type": "WatchEvent", "created_at": "2024-03-02T10:00:00Z", "repo": {"name": "someone/cool-lib"}},
    {"type": "PushEvent", "created_at": "2024-03-02T09:00:00Z", "repo": {"name": "octo/repo"}},
    {"type": "WatchEvent", "created_at": "2024-02-20T10:00:00Z", "repo": {"name": "old/star"}},
]


class FakeGitHub:
    """Answers the handful of GitHub endpoints the exporter uses."""

    def __init__(self) -> None:
        self.paths: list[str] = []

    async def get_json(self, path: str, params: dict | None = None):
        self.paths.append(path)
        if path == "/user":
            return {"login": "octo"}
        if path == "/search/issues":
            item = _PR if "is:pr" in params["q"] else _ISSUE
            return {"total_count": 1, "items": [item]}
        if path == "/search/commits":
            assert "author:octo" in params["q"]
            return {"total_count": 1, "items": [_COMMIT]}
        if path == "/users/octo/events":
            return _EVENTS
        if path == "/repos/octo/repo/commits/abc1234def":
            return _COMMIT_DETAILS
        raise AssertionError(f"unexpected path {path}")


def test_export_activity_writes_one_file_per_day(tmp_path: Path) -> None:
    client = FakeGitHub()

    written = asyncio.run(export_activity(client, _RANGE, tmp_path, policy=_NO_WAIT))

    assert [p.name for p in written] == ["2024-03-01.md", "2024-03-02.md"]

    day_one = (tmp_path / "2024-03-01.md").read_text(encoding="utf-8")
    assert day_one.startswith("# GitHub Activity Summary (2024-03-01)")
    assert "### Add exporter" in day_one
    assert "- Status: merged" in day_one
    assert "**Total:** 1 (1 merged, 0 open, 0 closed)" in day_one
    assert "### octo/repo: Fix paging" in day_one
    assert "```diff" in day_one
    assert "src/app.py" in day_one
    assert "package-lock.json" not in day_one

    day_two = (tmp_path / "2024-03-02.md").read_text(encoding="utf-8")
    assert "### Exporter crashes" in day_two
    assert "**Total:** 1 (1 open, 0 closed)" in day_two
    assert "### someone/cool-lib" in day_two
    assert "old/star" not in day_two
    assert "octo/repo: Fix paging" not in day_two


def test_export_activity_uses_configured_username(tmp_path: Path) -> None:
    client = FakeGitHub()
    original = client.get_json

    async def get_json(path: str, params: dict | None = None):
        if path == "/users/someone-else/events":
            client.paths.append(path)
            return []
        return await original(path, params)

    client.get_json = get_json

    asyncio.run(export_activity(client, _RANGE, tmp_path, username="someone-else", policy=_NO_WAIT))

    assert "/users/someone-else/events" in client.paths
    assert "/users/octo/events" not in client.paths


def test_failed_commit_detail_does_not_abort_export(tmp_path: Path) -> None:
    client = FakeGitHub()
    original = client.get_json

    async def get_json(path: str, params: dict | None = None):
        if path.startswith("/repos/"):
            raise ValueError("detail lookup failed")
        return await original(path, params)

    client.get_json = get_json

    written = asyncio.run(export_activity(client, _RANGE, tmp_path, policy=_NO_WAIT))

    assert len(written) == 2
    day_one = (tmp_path / "2024-03-01.md").read_text(encoding="utf-8")
    assert "### Add exporter" in day_one
    assert "Fix paging" not in day_one


def test_search_pages_follows_total_count() -> None:
    client = MagicMock()
    client.get_json = AsyncMock(return_value={"total_count": 250, "items": [{}] * PAGE_SIZE})
    fetch_page = search_pages(client, "/search/issues", "is:pr")

    first = asyncio.run(fetch_page(None))
    second = asyncio.run(fetch_page("2"))
    third = asyncio.run(fetch_page("3"))

    assert first.next_cursor == "2"
    assert second.next_cursor == "3"
    assert third.next_cursor is None
    assert first.total_count == 250


def test_search_pages_stops_on_empty_page() -> None:
    client = MagicMock()
    client.get_json = AsyncMock(return_value={"total_count": 500, "items": []})

    page = asyncio.run(search_pages(client, "/search/issues", "is:pr")(None))

    assert page.next_cursor is None


def test_render_empty_day_has_all_sections() -> None:
    text = render_day(DailyActivity(day=date(2024, 3, 1)))

    for heading in ("## Pull Requests", "## Commits", "## Issues", "## Starred Repositories"):
        assert heading in text
    assert "**Total:** 0 (0 merged, 0 open, 0 closed)" in text


def test_parse_args_defaults() -> None:
    args = parse_args(["-s", "2024-03-01", "-e", "2024-03-02"])

    assert args.output == "./activity"
    assert args.batch_size == 10


def test_parse_args_requires_dates() -> None:
    with pytest.raises(SystemExit):
        parse_args([])


def test_fetch_starred_stops_at_last_available_events_page() -> None:
    requested: list[int] = []

    async def get_json(path: str, params: dict | None = None):
        requested.append(params["page"])
        if params["page"] > EVENTS_PAGE_LIMIT:
            response = requests.Response()
            response.status_code = 422
            raise requests.HTTPError("422 pagination is limited for this resource", response=response)
        return [
            {"type": "WatchEvent", "created_at": "2024-03-02T10:00:00Z", "repo": {"name": f"p{params['page']}/r{i}"}}
            for i in range(PAGE_SIZE)
        ]

    client = MagicMock()
    client.get_json = get_json

    stars = asyncio.run(fetch_starred(client, "octo", _RANGE, _NO_WAIT))

    assert requested == list(range(1, EVENTS_PAGE_LIMIT + 1))
    assert len(stars) == EVENTS_PAGE_LIMIT * PAGE_SIZE
