"""Export Readwise highlights for a date range as one Markdown file per book."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
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
from http_client import ApiClient
from models import DateRange, Page
from paginator import fetch_all
from retry_guard import RetryPolicy, policy_from_env
from sinks import claim_filename, safe_filename, write_text

READWISE_API_URL = "https://readwise.io/api/v2"
DEFAULT_PAGE_SIZE = 100

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExportStats:
    books: int
    highlights: int


def build_client(token: str) -> ApiClient:
    return ApiClient(READWISE_API_URL, headers={"Authorization": f"Token {token}"})


def highlight_in_range(highlight: dict[str, Any], date_range: DateRange) -> bool:
    when = parse_timestamp(highlight.get("highlighted_at") or highlight.get("created_at"))
    return when is not None and date_range.contains(when.date())


def format_highlight(highlight: dict[str, Any]) -> str:
    when = parse_timestamp(highlight.get("highlighted_at") or highlight.get("created_at"))
    heading = f"{when:%B} {when.day}, {when.year}, {when:%H:%M}" if when else "Undated"
    parts = [f"## {heading}", "", f"> {highlight.get('text', '')}", ""]
    if highlight.get("note"):
        parts += [f"**Note:** {highlight['note']}", ""]
    tags = [f"#{tag['name']}" for tag in highlight.get("tags") or [] if tag.get("name")]
    if tags:
        parts += [f"**Tags:** {' '.join(tags)}", ""]
    parts += ["---", ""]
    return "\n".join(parts) + "\n"


def format_book(book: dict[str, Any], highlights: list[dict[str, Any]]) -> str:
    lines = [f"# {book.get('title') or 'Untitled'}", ""]
    if book.get("author"):
        lines += [f"**Author:** {book['author']}", ""]
    for key, label in (("category", "Category"), ("source", "Source"), ("source_url", "URL")):
        if book.get(key):
            lines.append(f"**{label}:** {book[key]}")
    lines += ["", "---", "", ""]
    return "\n".join(lines) + "".join(format_highlight(h) for h in highlights)


def export_pages(client: ApiClient, page_size: int):
    async def fetch_page(cursor: str | None) -> Page[dict[str, Any]]:
        params: dict[str, Any] = {"page_size": page_size}
        if cursor:
            params["pageCursor"] = cursor
        data = await client.get_json("/export/", params=params)
        next_cursor = data.get("nextPageCursor")
        return Page(
            items=data.get("results") or [],
            next_cursor=str(next_cursor) if next_cursor else None,
            total_count=data.get("count"),
        )

    return fetch_page


async def export_highlights(
    client: ApiClient,
    date_range: DateRange,
    output_dir: Path,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    policy: RetryPolicy | None = None,
) -> ExportStats:
    """Write every book with at least one highlight in the range."""
    books = await fetch_all(export_pages(client, page_size), retry_policy=policy, label="book")

    total_books = 0
    total_highlights = 0
    taken: set[str] = set()
    for book in books:
        relevant = [h for h in book.get("highlights") or [] if highlight_in_range(h, date_range)]
        if not relevant:
            continue
        filename = claim_filename(
            f"{safe_filename(book.get('title') or 'untitled')}.md",
            str(book.get("user_book_id") or book.get("source_url") or book.get("title")),
            taken,
        )
        path = write_text(output_dir / filename, format_book(book, relevant))
        LOGGER.info("Saved %s", path)
        total_books += 1
        total_highlights += len(relevant)

    LOGGER.info(
        "Export completed: %s books, %s highlights, output directory %s",
        total_books,
        total_highlights,
        output_dir,
    )
    return ExportStats(books=total_books, highlights=total_highlights)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="readwise2md",
        description="Export Readwise highlights for a given date range as Markdown",
    )
    add_date_range_arguments(parser)
    parser.add_argument("-o", "--output", default="./highlights", help="Output directory")
    parser.add_argument(
        "-b",
        "--batch-size",
        type=positive_int,
        default=DEFAULT_PAGE_SIZE,
        help="Number of results per page",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    date_range = parse_date_range(args.start, args.end)
    client = build_client(require_env("READWISE_TOKEN"))
    LOGGER.info("Exporting highlights from %s to %s...", args.start, args.end)
    try:
        await export_highlights(
            client,
            date_range,
            Path(args.output),
            page_size=args.batch_size,
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
