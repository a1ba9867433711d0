"""Export GitHub activity (PRs, commits, issues, stars) as one Markdown file per day."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from cli_common import (
    add_common_arguments,
    add_date_range_arguments,
    configure_logging,
    parse_date_range,
    parse_timestamp,
    positive_int,
    require_env,
    run_cli,
)
from concurrency import map_bounded
from http_client import ApiClient
from models import DateRange, Page, TransformOutcome
from paginator import fetch_all
from reporter import report
from retry_guard import RetryPolicy, policy_from_env, with_retry
from sinks import write_text

GITHUB_API_URL = "https://api.github.com"
PAGE_SIZE = 100
DEFAULT_BATCH_SIZE = 10
# GitHub search never returns more than this many results per query.
SEARCH_RESULT_CAP = 1000
# The user events endpoint serves at most 300 events and rejects later pages.
EVENTS_PAGE_LIMIT = 300 // PAGE_SIZE
IGNORED_FILES = ("package-lock.json", "yarn.lock", "pnpm-lock.yaml")

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DailyActivity:
    day: date
    pull_requests: list[dict[str, Any]] = field(default_factory=list)
    commits: list[dict[str, Any]] = field(default_factory=list)
    issues: list[dict[str, Any]] = field(default_factory=list)
    stars: list[dict[str, Any]] = field(default_factory=list)


def build_client(token: str) -> ApiClient:
    return ApiClient(
        GITHUB_API_URL,
        headers={
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        },
    )


def search_pages(client: ApiClient, path: str, query: str, **extra: Any):
    """Page fetcher for the search API, driven by its ``total_count``."""

    async def fetch_page(cursor: str | None) -> Page[dict[str, Any]]:
        page = int(cursor or "1")
        data = await client.get_json(path, params={"q": query, "per_page": PAGE_SIZE, "page": page, **extra})
        items = data.get("items") or []
        total = min(int(data.get("total_count") or 0), SEARCH_RESULT_CAP)
        has_more = bool(items) and page * PAGE_SIZE < total
        return Page(items=items, next_cursor=str(page + 1) if has_more else None, total_count=total)

    return fetch_page


async def fetch_pull_requests(client: ApiClient, date_range: DateRange, policy: RetryPolicy) -> list[dict[str, Any]]:
    query = f"is:pr author:@me created:{date_range.start.isoformat()}..{date_range.end.isoformat()}"
    items = await fetch_all(search_pages(client, "/search/issues", query), retry_policy=policy, label="pull request")
    return [_normalize_pull_request(item) for item in items]


async def fetch_issues(client: ApiClient, date_range: DateRange, policy: RetryPolicy) -> list[dict[str, Any]]:
    query = f"is:issue author:@me created:{date_range.start.isoformat()}..{date_range.end.isoformat()}"
    items = await fetch_all(search_pages(client, "/search/issues", query), retry_policy=policy, label="issue")
    return [_normalize_issue(item) for item in items]


async def fetch_starred(
    client: ApiClient,
    username: str,
    date_range: DateRange,
    policy: RetryPolicy,
) -> list[dict[str, Any]]:
    """Collect WatchEvents in range; stops once events predate the range or run out."""

    async def fetch_page(cursor: str | None) -> Page[dict[str, Any]]:
        page = int(cursor or "1")
        events = await client.get_json(f"/users/{username}/events", params={"per_page": PAGE_SIZE, "page": page})
        if not isinstance(events, list):
            events = []
        last = parse_timestamp(events[-1].get("created_at")) if events else None
        exhausted = len(events) < PAGE_SIZE or (last is not None and last.date() < date_range.start)
        if not exhausted and page >= EVENTS_PAGE_LIMIT:
            LOGGER.info("Reached the last available page of events; older stars are not listed")
            exhausted = True
        return Page(items=events, next_cursor=None if exhausted else str(page + 1))

    events = await fetch_all(fetch_page, retry_policy=policy, label="event")
    stars = []
    for event in events:
        created = parse_timestamp(event.get("created_at"))
        if event.get("type") != "WatchEvent" or created is None or not date_range.contains(created.date()):
            continue
        repo = event.get("repo") or {}
        stars.append({
            "name": repo.get("name", ""),
            "url": f"https://github.com/{repo.get('name', '')}",
            "description": repo.get("description"),
            "created_at": event.get("created_at"),
        })
    return stars


async def fetch_commits(
    client: ApiClient,
    login: str,
    date_range: DateRange,
    policy: RetryPolicy,
    batch_size: int,
) -> tuple[list[dict[str, Any]], list[TransformOutcome]]:
    """Search the user's commits, then fetch per-commit diffs with bounded concurrency."""
    query = (
        f"author:{login} committer:{login} "
        f"committer-date:{date_range.start.isoformat()}..{date_range.end.isoformat()}"
    )
    found = await fetch_all(
        search_pages(client, "/search/commits", query, sort="committer-date", order="desc"),
        retry_policy=policy,
        label="commit",
    )
    LOGGER.info("Found %s commits, fetching details", len(found))

    async def fetch_details(commit: dict[str, Any]) -> TransformOutcome:
        sha = commit.get("sha", "")
        repository = (commit.get("repository") or {}).get("full_name")
        message = (commit.get("commit") or {}).get("message")
        if not repository or not message or not commit.get("html_url"):
            return TransformOutcome.failure(sha, "commit search result is missing repository, message or URL")

        data = await with_retry(
            lambda: client.get_json(f"/repos/{repository}/commits/{sha}"),
            policy,
            label=f"commit {sha[:7]}",
        )
        details = {
            "message": message,
            "url": commit["html_url"],
            "repository": repository,
            "date": ((commit.get("commit") or {}).get("author") or {}).get("date"),
            "files": [
                {
                    "filename": f.get("filename", ""),
                    "status": f.get("status", ""),
                    "additions": f.get("additions", 0),
                    "deletions": f.get("deletions", 0),
                    "patch": f.get("patch") or "",
                }
                for f in data.get("files") or []
                if not str(f.get("filename", "")).endswith(IGNORED_FILES)
            ],
        }
        return TransformOutcome.success(sha, details)

    outcomes = await map_bounded(found, fetch_details, batch_size, item_id=lambda c: c.get("sha", ""))
    commits = [o.artifact for o in outcomes if o.ok]
    return commits, outcomes


def group_by_day(
    date_range: DateRange,
    pull_requests: list[dict[str, Any]],
    commits: list[dict[str, Any]],
    issues: list[dict[str, Any]],
    stars: list[dict[str, Any]],
) -> list[DailyActivity]:
    days = {day: DailyActivity(day=day) for day in date_range.days()}

    def bucket(records: list[dict[str, Any]], key: str, attr: str) -> None:
        for record in records:
            created = parse_timestamp(record.get(key))
            if created is not None and created.date() in days:
                getattr(days[created.date()], attr).append(record)

    bucket(pull_requests, "created_at", "pull_requests")
    bucket(commits, "date", "commits")
    bucket(issues, "created_at", "issues")
    bucket(stars, "created_at", "stars")
    return list(days.values())


def render_day(activity: DailyActivity) -> str:
    prs = activity.pull_requests
    merged = sum(1 for pr in prs if pr["state"] == "merged")
    open_prs = sum(1 for pr in prs if pr["state"] == "open")
    closed = sum(1 for pr in prs if pr["state"] == "closed")

    lines = [f"# GitHub Activity Summary ({activity.day.isoformat()})", ""]

    lines += ["## Pull Requests", ""]
    lines += [f"**Total:** {len(prs)} ({merged} merged, {open_prs} open, {closed} closed)", ""]
    for pr in prs:
        lines += [
            f"### {pr['title']}",
            f"- Repository: {pr['repository']}",
            f"- Status: {pr['state']}",
            f"- URL: {pr['url']}",
            "",
        ]

    lines += ["## Commits", "", f"**Total:** {len(activity.commits)}", ""]
    for commit in activity.commits:
        lines += [f"### {commit['repository']}: {commit['message'].splitlines()[0]}", f"URL: {commit['url']}", ""]
        if commit["files"]:
            lines += ["#### Changes", ""]
            for f in commit["files"]:
                lines.append(f"**{f['filename']}** ({f['additions']} additions, {f['deletions']} deletions)")
                if f["patch"]:
                    lines += ["```diff", f["patch"], "```", ""]
        lines.append("")

    issues = activity.issues
    open_issues = sum(1 for issue in issues if issue["state"] == "open")
    lines += ["## Issues", ""]
    lines += [f"**Total:** {len(issues)} ({open_issues} open, {len(issues) - open_issues} closed)", ""]
    for issue in issues:
        lines += [
            f"### {issue['title']}",
            f"- Repository: {issue['repository']}",
            f"- Status: {issue['state']}",
            f"- URL: {issue['url']}",
            "",
        ]

    lines += ["## Starred Repositories", "", f"**Total:** {len(activity.stars)}", ""]
    for repo in activity.stars:
        lines.append(f"### {repo['name']}")
        if repo.get("description"):
            lines += [repo["description"], ""]
        lines += [f"URL: {repo['url']}", ""]

    return "\n".join(lines) + "\n"


async def export_activity(
    client: ApiClient,
    date_range: DateRange,
    output_dir: Path,
    *,
    username: str | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    policy: RetryPolicy | None = None,
) -> list[Path]:
    """Fetch every activity type for the range and write one file per day."""
    policy = policy or RetryPolicy()
    user = await with_retry(lambda: client.get_json("/user"), policy, label="authenticated user")
    login = user.get("login", "")
    username = username or login

    pull_requests, (commits, commit_outcomes), issues, stars = await asyncio.gather(
        fetch_pull_requests(client, date_range, policy),
        fetch_commits(client, login, date_range, policy, batch_size),
        fetch_issues(client, date_range, policy),
        fetch_starred(client, username, date_range, policy),
    )

    written: list[Path] = []
    for activity in group_by_day(date_range, pull_requests, commits, issues, stars):
        path = write_text(output_dir / f"{activity.day.isoformat()}.md", render_day(activity))
        written.append(path)
        LOGGER.info(
            "%s: %s pull requests, %s commits, %s issues, %s stars -> %s",
            activity.day.isoformat(),
            len(activity.pull_requests),
            len(activity.commits),
            len(activity.issues),
            len(activity.stars),
            path,
        )

    report(commit_outcomes, title="commit details")
    return written


def _repository_from_url(url: str) -> str:
    return "/".join(url.rstrip("/").split("/")[-2:]) if url else ""


def _normalize_pull_request(item: dict[str, Any]) -> dict[str, Any]:
    merged_at = (item.get("pull_request") or {}).get("merged_at")
    if merged_at:
        state = "merged"
    elif item.get("closed_at"):
        state = "closed"
    else:
        state = "open"
    return {
        "title": item.get("title", ""),
        "url": item.get("html_url", ""),
        "repository": _repository_from_url(item.get("repository_url", "")),
        "state": state,
        "created_at": item.get("created_at"),
    }


def _normalize_issue(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "title": item.get("title", ""),
        "url": item.get("html_url", ""),
        "repository": _repository_from_url(item.get("repository_url", "")),
        "state": item.get("state", "open"),
        "created_at": item.get("created_at"),
    }


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="gh2md", description="Export GitHub activity for a date range as Markdown")
    add_date_range_arguments(parser)
    parser.add_argument("-o", "--output", default="./activity", help="Output directory")
    parser.add_argument(
        "-b",
        "--batch-size",
        type=positive_int,
        default=DEFAULT_BATCH_SIZE,
        help="Number of commit details fetched in parallel",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    date_range = parse_date_range(args.start, args.end)
    client = build_client(require_env("GITHUB_TOKEN"))
    LOGGER.info("Exporting GitHub activity from %s to %s", args.start, args.end)
    try:
        await export_activity(
            client,
            date_range,
            Path(args.output),
            username=os.getenv("GITHUB_USERNAME"),
            batch_size=args.batch_size,
            policy=policy_from_env(),
        )
    finally:
        client.close()


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.verbose)
    sys.exit(run_cli(lambda: _run(args)))


if __name__ == "__main__":
    main()
