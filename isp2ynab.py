"""Convert an Italian bank statement spreadsheet (stdin) into a YNAB CSV (stdout)."""

from __future__ import annotations

import argparse
import io
import logging
import re
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import openpyxl
from dotenv import load_dotenv

from cli_common import add_common_arguments, configure_logging, run_cli
from errors import ToolError
from sinks import write_csv

# Layout of the statement export: 27 preamble rows, then the header row.
HEADER_ROW_INDEX = 27
DATE_COLUMN = 0
INFLOW_COLUMN = 3
OUTFLOW_COLUMN = 4
DESCRIPTION_COLUMN = 5

YNAB_COLUMNS = ["Date", "Payee", "Memo", "Outflow", "Inflow"]

LOGGER = logging.getLogger(__name__)

_DATE_PATTERN = re.compile(r"\d{2}/\d{2}/\d{2}")
_AMOUNT_NOISE = re.compile(r"[^\d.,]")
_SEPARATORS = re.compile(r"[.,]")


@dataclass(slots=True)
class ConversionResult:
    rows: list[dict[str, str]] = field(default_factory=list)
    skipped: int = 0


def is_valid_date(value: Any) -> bool:
    """Return True for a real calendar date written as ``DD/MM/YY``."""
    if not isinstance(value, str) or not _DATE_PATTERN.fullmatch(value):
        return False
    day, month, year = (int(part) for part in value.split("/"))
    try:
        date(2000 + year, month, day)
    except ValueError:
        return False
    return True


def format_date(value: str) -> str:
    """``DD/MM/YY`` -> ``20YY-MM-DD``."""
    day, month, year = value.split("/")
    return f"20{year}-{month}-{day}"


def normalize_amount(value: Any) -> str:
    """Turn a formatted amount into a plain positive decimal string.

    Currency symbols, whitespace and signs are dropped. The last ``.`` or
    ``,`` followed by one or two digits is the decimal separator; any other
    separator groups thousands and is removed.
    """
    if value is None or value == "":
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{abs(value):.2f}"

    text = _AMOUNT_NOISE.sub("", str(value))
    if not text:
        return ""

    last_separator = max(text.rfind("."), text.rfind(","))
    decimals = len(text) - last_separator - 1
    if last_separator == -1 or decimals not in (1, 2):
        return _SEPARATORS.sub("", text)

    integer_part = _SEPARATORS.sub("", text[:last_separator]) or "0"
    return f"{integer_part}.{text[last_separator + 1:]}"


def convert_rows(rows: Iterable[Sequence[Any]]) -> ConversionResult:
    """Map statement rows to YNAB rows, dropping rows without a valid date."""
    result = ConversionResult()
    for row in rows:
        cells = [_cell_text(cell) for cell in row]
        if not any(cells):
            continue
        first = cells[DATE_COLUMN] if cells else ""
        if not is_valid_date(first):
            result.skipped += 1
            continue

        description = _column(cells, DESCRIPTION_COLUMN)
        result.rows.append({
            "Date": format_date(first),
            "Payee": description,
            "Memo": description,
            "Outflow": normalize_amount(_column(row, OUTFLOW_COLUMN)),
            "Inflow": normalize_amount(_column(row, INFLOW_COLUMN)),
        })
    return result


def read_statement_rows(data: bytes) -> list[list[Any]]:
    """Return the data rows (after the header row) of the first sheet."""
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        raise ToolError(f"Could not read spreadsheet: {exc}") from exc

    try:
        sheet = workbook.worksheets[0]
        rows = [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()
    return rows[HEADER_ROW_INDEX + 1:]


def _cell_text(cell: Any) -> str:
    if cell is None:
        return ""
    if isinstance(cell, (datetime, date)):
        return cell.strftime("%d/%m/%y")
    return str(cell).strip()


def _column(row: Sequence[Any], index: int) -> Any:
    return row[index] if index < len(row) and row[index] is not None else ""


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="isp2ynab",
        description="Convert a bank statement .xlsx read from stdin into YNAB CSV on stdout",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


def run() -> None:
    data = sys.stdin.buffer.read()
    if not data:
        raise ToolError("No spreadsheet data received on stdin")

    result = convert_rows(read_statement_rows(data))
    write_csv(result.rows, YNAB_COLUMNS, sys.stdout)

    LOGGER.info("Converted %s rows", len(result.rows))
    if result.skipped:
        LOGGER.warning("Skipped %s rows without a valid DD/MM/YY date", result.skipped)


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.verbose)
    sys.exit(run_cli(run))


if __name__ == "__main__":
    main()
