import argparse
import logging
from datetime import UTC, date, datetime
from unittest.mock import patch

import pytest
import requests

from cli_common import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
    parse_date,
    parse_date_range,
    parse_timestamp,
    positive_int,
    require_env,
    run_cli,
)
from errors import ConfigError, RemoteError


def test_parse_date_accepts_iso_literal() -> None:
    assert parse_date("2024-02-29") == date(2024, 2, 29)


@pytest.mark.parametrize("value", ["2023-02-29", "2024-13-01", "2024-1-01", "20240101", "01/02/2024", ""])
def test_parse_date_rejects_invalid_values(value: str) -> None:
    with pytest.raises(ConfigError, match="YYYY-MM-DD"):
        parse_date(value)


def test_parse_date_range_inclusive() -> None:
    date_range = parse_date_range("2024-03-01", "2024-03-03")

    assert date_range.days() == [date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 3)]
    assert date_range.contains(date(2024, 3, 3))
    assert not date_range.contains(date(2024, 3, 4))


def test_parse_date_range_single_day() -> None:
    assert parse_date_range("2024-03-01", "2024-03-01").days() == [date(2024, 3, 1)]


def test_parse_date_range_rejects_inverted_range() -> None:
    with pytest.raises(ConfigError, match="before start date"):
        parse_date_range("2024-03-02", "2024-03-01")


def test_parse_timestamp_handles_zulu_suffix() -> None:
    assert parse_timestamp("2024-03-01T10:15:00Z") == datetime(2024, 3, 1, 10, 15, tzinfo=UTC)


def test_parse_timestamp_converts_offsets_to_utc() -> None:
    assert parse_timestamp("2024-03-01T12:00:00+02:00") == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)


@pytest.mark.parametrize("raw", [None, "", "yesterday", 12345])
def test_parse_timestamp_returns_none_for_garbage(raw) -> None:
    assert parse_timestamp(raw) is None


def test_require_env_returns_value() -> None:
    with patch.dict("os.environ", {"SOME_TOKEN": "abc"}):
        assert require_env("SOME_TOKEN") == "abc"


def test_require_env_raises_when_missing() -> None:
    with patch.dict("os.environ", {}, clear=True):
        with pytest.raises(ConfigError, match="SOME_TOKEN environment variable is required"):
            require_env("SOME_TOKEN")


def test_positive_int() -> None:
    assert positive_int("3") == 3
    with pytest.raises(argparse.ArgumentTypeError):
        positive_int("0")
    with pytest.raises(argparse.ArgumentTypeError):
        positive_int("three")


# ---------------------------------------------------------------------------
# run_cli exit codes
# ---------------------------------------------------------------------------

def test_run_cli_sync_success() -> None:
    assert run_cli(lambda: None) == EXIT_OK


def test_run_cli_async_success() -> None:
    async def entry() -> None:
        return None

    assert run_cli(entry) == EXIT_OK


def test_run_cli_config_error_exits_one() -> None:
    async def entry() -> None:
        raise ConfigError("GITHUB_TOKEN environment variable is required")

    assert run_cli(entry) == EXIT_FAILURE


def test_run_cli_remote_error_exits_one() -> None:
    def entry() -> None:
        raise RemoteError("boom")

    assert run_cli(entry) == EXIT_FAILURE


def test_run_cli_unexpected_error_exits_one() -> None:
    async def entry() -> None:
        raise ValueError("programming error")

    assert run_cli(entry) == EXIT_FAILURE


def test_run_cli_keyboard_interrupt() -> None:
    def entry() -> None:
        raise KeyboardInterrupt

    assert run_cli(entry) == EXIT_INTERRUPTED


def _http_error(status: int) -> requests.HTTPError:
    response = requests.Response()
    response.status_code = status
    return requests.HTTPError(f"{status} Client Error: Unauthorized", response=response)


@pytest.mark.parametrize(
    "error",
    [_http_error(401), _http_error(404), requests.ConnectionError("connection refused")],
)
def test_run_cli_library_remote_failure_is_reported_without_traceback(
    error: Exception, caplog: pytest.LogCaptureFixture
) -> None:
    async def entry() -> None:
        raise error

    with caplog.at_level(logging.ERROR, logger="cli_common"):
        assert run_cli(entry) == EXIT_FAILURE

    assert len(caplog.records) == 1
    record = caplog.records[0]
    assert record.getMessage().startswith("Error: remote request failed: ")
    assert record.exc_info is None
