"""Download Fireflies meeting transcripts for a date range as Markdown."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from datetime import UTC, datetime, time
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from cli_common import (
    add_common_arguments,
    add_date_range_arguments,
    configure_logging,
    parse_date_range,
    parse_timestamp,
    require_env,
    run_cli,
)
from http_client import ApiClient
from models import DateRange
from paginator import fetch_all, offset_pages
from retry_guard import RetryPolicy, policy_from_env
from sinks import claim_filename, safe_filename, write_text

FIREFLIES_API_URL = "https://api.fireflies.ai/graphql"
PAGE_SIZE = 50

TRANSCRIPTS_QUERY = """
query Transcripts($fromDate: DateTime!, $toDate: DateTime!, $limit: Int!, $skip: Int!) {
  transcripts(fromDate: $fromDate, toDate: $toDate, limit: $limit, skip: $skip) {
    id
    title
    date
    sentences {
      speaker_name
      text
      start_time
      end_time
    }
  }
}
"""

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExportResult:
    saved: list[Path]
    skipped: int


def build_client(api_key: str) -> ApiClient:
    return ApiClient(FIREFLIES_API_URL, headers={"Authorization": f"Bearer {api_key}"})


def transcript_datetime(raw: Any) -> datetime | None:
    """Fireflies reports dates as epoch milliseconds; accept ISO strings too."""
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(raw / 1000, tz=UTC)
    if isinstance(raw, str) and raw.isdigit():
        return datetime.fromtimestamp(int(raw) / 1000, tz=UTC)
    return parse_timestamp(raw)


def format_offset(seconds: float | int | None) -> str:
    """Seconds from the start of the meeting as ``HH:MM:SS``."""
    total = int(seconds or 0)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def render_transcript(transcript: dict[str, Any]) -> str:
    when = transcript_datetime(transcript.get("date"))
    heading_date = f"{when:%B} {when.day}, {when.year}" if when else "unknown date"
    lines = [f"# {transcript.get('title') or 'Untitled'} ({heading_date})", ""]
    for sentence in transcript.get("sentences") or []:
        lines.append(
            f"[{format_offset(sentence.get('start_time'))}] "
            f"{sentence.get('speaker_name') or 'Unknown'}: {sentence.get('text', '')}"
        )
    return "\n".join(lines) + "\n"


def transcript_filename(transcript: dict[str, Any]) -> str:
    when = transcript_datetime(transcript.get("date"))
    prefix = when.date().isoformat() if when else "undated"
    return f"{prefix}_{safe_filename(transcript.get('title') or 'untitled')}.md"


async def fetch_transcripts(
    client: ApiClient,
    date_range: DateRange,
    policy: RetryPolicy | None = None,
) -> list[dict[str, Any]]:
    """Fetch every transcript in the range, ``limit``/``skip`` paged."""
    from_date = datetime.combine(date_range.start, time.min, tzinfo=UTC)
    to_date = datetime.combine(date_range.end, time.max, tzinfo=UTC)

    async def fetch_items(skip: int, limit: int) -> list[dict[str, Any]]:
        LOGGER.info("Fetching page %s...", skip // limit + 1)
        data = await client.graphql(
            TRANSCRIPTS_QUERY,
            {
                "fromDate": from_date.isoformat().replace("+00:00", "Z"),
                "toDate": to_date.isoformat().replace("+00:00", "Z"),
                "limit": limit,
                "skip": skip,
            },
        )
        return data.get("transcripts") or []

    return await fetch_all(offset_pages(fetch_items, PAGE_SIZE), retry_policy=policy, label="transcript")


async def export_transcripts(
    client: ApiClient,
    date_range: DateRange,
    output_dir: Path,
    *,
    policy: RetryPolicy | None = None,
) -> ExportResult:
    """Write one Markdown file per transcript; transcripts without sentences are skipped."""
    transcripts = await fetch_transcripts(client, date_range, policy)
    if not transcripts:
        LOGGER.info("No transcripts found for the specified date range.")
        return ExportResult(saved=[], skipped=0)

    saved: list[Path] = []
    skipped = 0
    taken: set[str] = set()
    for transcript in transcripts:
        if not transcript.get("sentences"):
            skipped += 1
            continue
        filename = claim_filename(transcript_filename(transcript), str(transcript.get("id") or ""), taken)
        path = write_text(output_dir / filename, render_transcript(transcript))
        saved.append(path)
        LOGGER.info("Saved transcript: %s", path.name)

    LOGGER.info("Successfully downloaded %s transcripts to %s", len(saved), output_dir)
    if skipped:
        LOGGER.warning("Skipped %s transcripts with no content", skipped)
    return ExportResult(saved=saved, skipped=skipped)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="fireflies2md",
        description="Download Fireflies transcripts for a given date range as Markdown",
    )
    add_date_range_arguments(parser)
    parser.add_argument("-o", "--output", default="./transcripts", help="Output directory")
    add_common_arguments(parser)
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    date_range = parse_date_range(args.start, args.end)
    client = build_client(require_env("FIREFLIES_API_KEY"))
    LOGGER.info("Fetching transcripts from %s to %s...", args.start, args.end)
    try:
        await export_transcripts(client, date_range, Path(args.output), policy=policy_from_env())
    finally:
        client.close()


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.verbose)
    sys.exit(run_cli(lambda: _run(args)))


if __name__ == "__main__":
    main()
