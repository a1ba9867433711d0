"""Extract currency, totals, date and payee from a PDF receipt read on stdin."""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from datetime import datetime
from typing import Any

from dotenv import load_dotenv

from cli_common import add_common_arguments, configure_logging, run_cli
from errors import ToolError, TransformError
from llm_client import TextGenerator, build_generator, parse_json_object
from retry_guard import RetryPolicy, policy_from_env, with_retry

REQUIRED_FIELDS = ("currency", "total", "vat", "date", "payee")
RECEIPT_MAX_TOKENS = 1000

SYSTEM_PROMPT = """You are a receipt analysis assistant. Extract the following information from the receipt:
- Currency (ISO code)
- Total amount
- VAT amount
- Date
- Payee/business name

Return only a JSON object with these fields: currency, total, vat, date, payee.
No explanation or other text."""

USER_PROMPT = "Extract the receipt fields as JSON."

LOGGER = logging.getLogger(__name__)

_CURRENCY_PATTERN = re.compile(r"[A-Z]{3}")
_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y", "%m/%d/%Y", "%d-%m-%Y")


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def _is_date(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    text = value.strip()
    try:
        datetime.fromisoformat(text.replace("Z", "+00:00"))
        return True
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            datetime.strptime(text, fmt)
            return True
        except ValueError:
            continue
    return False


def validate_receipt(data: dict[str, Any]) -> dict[str, Any]:
    """Check the extracted receipt fields; raises TransformError on the first problem."""
    missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, "")]
    if missing:
        raise TransformError(f"Missing required fields: {', '.join(missing)}")
    if not isinstance(data["currency"], str) or not _CURRENCY_PATTERN.fullmatch(data["currency"]):
        raise TransformError("Invalid currency ISO code")
    if not _is_number(data["total"]):
        raise TransformError("Invalid total amount")
    if not _is_number(data["vat"]):
        raise TransformError("Invalid VAT amount")
    if not _is_date(data["date"]):
        raise TransformError("Invalid date format")
    return data


async def extract_receipt(
    generator: TextGenerator,
    pdf: bytes,
    *,
    policy: RetryPolicy | None = None,
) -> dict[str, Any]:
    response = await with_retry(
        lambda: generator.generate(USER_PROMPT, system=SYSTEM_PROMPT, max_tokens=RECEIPT_MAX_TOKENS, pdf=pdf),
        policy,
        label="receipt analysis",
    )
    return validate_receipt(parse_json_object(response))


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="receipt2json",
        description="Extract information from a receipt PDF read on stdin",
    )
    parser.add_argument("-m", "--model", help="Model to use (default depends on provider)")
    parser.add_argument("--provider", choices=("anthropic", "openai"), help="LLM provider (default: LLM_PROVIDER)")
    add_common_arguments(parser)
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    generator = build_generator(args.provider, model=args.model)
    pdf = sys.stdin.buffer.read()
    if not pdf:
        raise ToolError("No PDF data received on stdin")

    receipt = await extract_receipt(generator, pdf, policy=policy_from_env())
    sys.stdout.write(json.dumps(receipt, indent=2, ensure_ascii=False) + "\n")
    LOGGER.info("Extracted receipt from %s", receipt["payee"])


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.verbose)
    sys.exit(run_cli(lambda: _run(args)))


if __name__ == "__main__":
    main()
