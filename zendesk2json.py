"""Fetch Zendesk tickets for a date range and emit them as JSON or Markdown."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, timedelta
from typing import Any

from dotenv import load_dotenv

from cli_common import (
    add_common_arguments,
    configure_logging,
    parse_date,
    parse_timestamp,
    positive_int,
    require_env,
    run_cli,
)
from concurrency import map_bounded
from errors import ConfigError
from http_client import ApiClient
from models import DateRange, Page, TransformOutcome
from paginator import fetch_all
from reporter import report
from retry_guard import RetryPolicy, policy_from_env, with_retry
from sinks import emit

DEFAULT_PAGE_SIZE = 100
LOOKBACK_DAYS = 365
COMMENT_DELAY_SECONDS = 0.5
VOICE_TAG_MARKERS = ("voice", "call", "audio")
OUTPUT_FORMATS = ("json", "markdown")

LOGGER = logging.getLogger(__name__)


def build_client(subdomain: str, email: str, api_token: str) -> ApiClient:
    return ApiClient(
        f"https://{subdomain}.zendesk.com/api/v2",
        auth=(f"{email}/token", api_token),
        headers={"Content-Type": "application/json"},
    )


def resolve_date_range(start: str | None, end: str | None, today: date | None = None) -> DateRange:
    """Default to the last twelve months ending today."""
    today = today or date.today()
    end_date = parse_date(end) if end else today
    start_date = parse_date(start) if start else end_date - timedelta(days=LOOKBACK_DAYS)
    if end_date < start_date:
        raise ConfigError(f"End date {end_date} is before start date {start_date}")
    return DateRange(start=start_date, end=end_date)


def search_query(date_range: DateRange) -> str:
    return f"type:ticket created>={date_range.start.isoformat()} created<={date_range.end.isoformat()}"


def is_voice_ticket(ticket: dict[str, Any]) -> bool:
    if (ticket.get("via") or {}).get("channel") == "voice":
        return True
    return any(marker in str(tag) for tag in ticket.get("tags") or [] for marker in VOICE_TAG_MARKERS)


def ticket_pages(client: ApiClient, date_range: DateRange, page_size: int):
    """Page fetcher following the absolute ``next_page`` URLs Zendesk returns."""

    async def fetch_page(cursor: str | None) -> Page[dict[str, Any]]:
        if cursor:
            data = await client.get_json(cursor)
        else:
            data = await client.get_json(
                "/search.json",
                params={
                    "query": search_query(date_range),
                    "sort_by": "created_at",
                    "sort_order": "desc",
                    "per_page": page_size,
                },
            )
        results = data.get("results") or []
        return Page(
            items=results,
            next_cursor=data.get("next_page") if results else None,
            total_count=data.get("count"),
        )

    return fetch_page


def _log_progress(fetched: int, total: int | None) -> None:
    if total is not None:
        LOGGER.info("Fetched %s/%s tickets", fetched, total)
    else:
        LOGGER.info("Fetched %s tickets", fetched)


async def attach_voice_comments(
    client: ApiClient,
    tickets: list[dict[str, Any]],
    policy: RetryPolicy,
    *,
    delay: float = COMMENT_DELAY_SECONDS,
) -> list[TransformOutcome]:
    """Fetch comments for voice tickets one at a time, spaced by ``delay``."""
    voice_tickets = [ticket for ticket in tickets if is_voice_ticket(ticket)]
    if not voice_tickets:
        LOGGER.info("No audio tickets found")
        return []

    async def fetch_comments(ticket: dict[str, Any]) -> TransformOutcome:
        data = await with_retry(
            lambda: client.get_json(f"/tickets/{ticket['id']}/comments.json"),
            policy,
            label=f"comments for ticket {ticket['id']}",
        )
        ticket["comments"] = data.get("comments") or []
        return TransformOutcome.success(str(ticket["id"]), comments=len(ticket["comments"]))

    outcomes = await map_bounded(
        voice_tickets,
        fetch_comments,
        1,
        delay_between=delay,
        item_id=lambda t: str(t.get("id")),
    )
    report(outcomes, title="voice tickets")
    return outcomes


async def fetch_tickets(
    client: ApiClient,
    date_range: DateRange,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_tickets: int | None = None,
    audio: bool = False,
    policy: RetryPolicy | None = None,
) -> list[dict[str, Any]]:
    """Search tickets created in the range, newest first.

    Args:
        client: Zendesk API client.
        date_range: Inclusive creation date range.
        page_size: Tickets requested per page.
        max_tickets: Optional cap; the final page is trimmed to it.
        audio: Also fetch comments for voice tickets.
        policy: Retry policy for every request.
    """
    policy = policy or RetryPolicy()
    tickets = await fetch_all(
        ticket_pages(client, date_range, page_size),
        max_items=max_tickets,
        on_progress=_log_progress,
        retry_policy=policy,
        label="ticket",
    )
    if audio:
        await attach_voice_comments(client, tickets, policy)
    return tickets


def format_markdown(subdomain: str, tickets: list[dict[str, Any]], *, audio: bool = False) -> str:
    lines = [f"# Zendesk Tickets for {subdomain}.zendesk.com", "", f"Total tickets: {len(tickets)}", ""]
    for ticket in tickets:
        lines += [
            f"## Ticket #{ticket.get('id')}: {ticket.get('subject') or 'No subject'}",
            "",
            f"**Status:** {ticket.get('status')}  ",
            f"**Priority:** {ticket.get('priority') or 'None'}  ",
            f"**Created:** {_display_time(ticket.get('created_at'))}  ",
            f"**Updated:** {_display_time(ticket.get('updated_at'))}  ",
        ]
        if ticket.get("assignee_id"):
            lines.append(f"**Assignee ID:** {ticket['assignee_id']}  ")
        if ticket.get("requester_id"):
            lines.append(f"**Requester ID:** {ticket['requester_id']}  ")
        if ticket.get("tags"):
            lines.append(f"**Tags:** {', '.join(ticket['tags'])}  ")
        lines += ["", "### Description", "", ticket.get("description") or "No description provided", ""]

        voice_comments = [c for c in ticket.get("comments") or [] if c.get("voice_comment")]
        if audio and voice_comments:
            lines += ["### Call Transcript", ""]
            for comment in voice_comments:
                voice = comment["voice_comment"]
                lines += [
                    f"**{_display_time(comment.get('created_at'))}**",
                    f"Duration: {voice.get('duration')} seconds",
                    f"Recording URL: {voice.get('recording_url') or 'Not available'}",
                    f"Transcription: {voice.get('transcription_text') or 'Not available'}",
                    "",
                ]
        lines += ["---", ""]
    return "\n".join(lines)


def format_json(subdomain: str, tickets: list[dict[str, Any]]) -> str:
    return json.dumps({"subdomain": subdomain, "total_count": len(tickets), "records": tickets}, indent=2)


def _display_time(raw: Any) -> str:
    parsed = parse_timestamp(raw)
    return parsed.strftime("%Y-%m-%d %H:%M:%S UTC") if parsed else str(raw or "unknown")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="zendesk2json",
        description="Fetch Zendesk tickets for a date range (default: the last 12 months)",
    )
    parser.add_argument("subdomain", help="Zendesk subdomain (company in company.zendesk.com)")
    parser.add_argument("-o", "--output", help="Output file (default: stdout)")
    parser.add_argument("-f", "--format", choices=OUTPUT_FORMATS, default="json", help="Output format")
    parser.add_argument("-p", "--page-size", type=positive_int, default=DEFAULT_PAGE_SIZE, help="Tickets per page")
    parser.add_argument("-m", "--max-tickets", type=positive_int, help="Maximum number of tickets to fetch")
    parser.add_argument("--start-date", help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end-date", help="End date (YYYY-MM-DD, default: today)")
    parser.add_argument("--audio", action="store_true", help="Fetch call comments for voice tickets")
    add_common_arguments(parser)
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    date_range = resolve_date_range(args.start_date, args.end_date)
    client = build_client(args.subdomain, require_env("ZENDESK_EMAIL"), require_env("ZENDESK_API_TOKEN"))
    LOGGER.info("Audio processing %s", "enabled" if args.audio else "disabled")
    try:
        tickets = await fetch_tickets(
            client,
            date_range,
            page_size=args.page_size,
            max_tickets=args.max_tickets,
            audio=args.audio,
            policy=policy_from_env(),
        )
    finally:
        client.close()

    LOGGER.info("Found %s tickets, writing %s output", len(tickets), args.format)
    if args.format == "markdown":
        content = format_markdown(args.subdomain, tickets, audio=args.audio)
    else:
        content = format_json(args.subdomain, tickets)
    emit(content, args.output)


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.verbose)
    sys.exit(run_cli(lambda: _run(args)))


if __name__ == "__main__":
    main()
