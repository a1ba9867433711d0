"""Shared CLI plumbing: logging setup, environment config, date ranges, exit codes."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from typing import Any

from errors import REMOTE_FAILURES, ConfigError, ToolError
from models import DateRange

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def configure_logging(verbose: bool = False) -> None:
    """Send log output to stderr so stdout stays clean for piped data."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
        force=True,
    )


def require_env(name: str) -> str:
    """Return a required environment variable or raise ConfigError."""
    value = os.getenv(name)
    if not value:
        raise ConfigError(f"{name} environment variable is required")
    return value


def parse_date(value: str) -> date:
    """Parse a strict ``YYYY-MM-DD`` literal."""
    try:
        if len(value) != 10:
            raise ValueError(value)
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid date {value!r}. Please use YYYY-MM-DD") from exc


def parse_timestamp(raw: Any) -> datetime | None:
    """Parse an ISO 8601 API timestamp into an aware UTC datetime."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def parse_date_range(start: str, end: str) -> DateRange:
    """Validate an inclusive date range before any remote call is made."""
    start_date = parse_date(start)
    end_date = parse_date(end)
    if end_date < start_date:
        raise ConfigError(f"End date {end} is before start date {start}")
    return DateRange(start=start_date, end=end_date)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )


def add_date_range_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-s", "--start", required=True, help="Start date (YYYY-MM-DD), inclusive")
    parser.add_argument("-e", "--end", required=True, help="End date (YYYY-MM-DD), inclusive")


def positive_int(value: str) -> int:
    """argparse type for options that must be >= 1."""
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a value >= 1, got {number}")
    return number


def run_cli(entry: Callable[[], Awaitable[None] | None]) -> int:
    """Run a tool entry point and map its outcome to an exit code.

    ``entry`` may be a plain function or a coroutine function. Per-item
    failures are the tool's business; anything that escapes ``entry`` ends
    the run with exit code 1. Tool errors and failures raised by the HTTP or
    LLM client libraries get a one-line message; anything else a traceback.
    """
    try:
        result = entry()
        if asyncio.iscoroutine(result):
            asyncio.run(result)
    except KeyboardInterrupt:
        LOGGER.warning("Interrupted by user")
        return EXIT_INTERRUPTED
    except ToolError as exc:
        LOGGER.error("Error: %s", exc)
        return EXIT_FAILURE
    except REMOTE_FAILURES as exc:
        LOGGER.error("Error: remote request failed: %s", exc)
        return EXIT_FAILURE
    except Exception as exc:
        LOGGER.exception("Error: unexpected failure: %s", exc)
        return EXIT_FAILURE
    return EXIT_OK
