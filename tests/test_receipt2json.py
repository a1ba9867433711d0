import asyncio

import pytest

from errors import TransformError
from receipt2json import SYSTEM_PROMPT, extract_receipt, validate_receipt
from retry_guard import RetryPolicy

_VALID = {"currency": "EUR", "total": 12.5, "vat": "2.25", "date": "2024-03-01", "payee": "Bar Centrale"}


class FakeGenerator:
    model = "fake"

    def __init__(self, response: str) -> None:
        self.response = response
        self.calls: list[dict] = []

    async def generate(self, prompt: str, *, system=None, max_tokens=None, pdf=None) -> str:
        self.calls.append({"prompt": prompt, "system": system, "pdf": pdf})
        return self.response


@pytest.mark.parametrize("day", ["2024-03-01", "01/03/2024", "01.03.2024", "2024-03-01T10:00:00Z"])
def test_validate_accepts_common_date_formats(day: str) -> None:
    assert validate_receipt({**_VALID, "date": day})["date"] == day


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"payee": ""}, "Missing required fields: payee"),
        ({"currency": None, "vat": None}, "Missing required fields: currency, vat"),
        ({"currency": "eur"}, "Invalid currency ISO code"),
        ({"currency": "EURO"}, "Invalid currency ISO code"),
        ({"total": "twelve"}, "Invalid total amount"),
        ({"total": True}, "Invalid total amount"),
        ({"vat": [1]}, "Invalid VAT amount"),
        ({"date": "yesterday"}, "Invalid date format"),
    ],
)
def test_validate_rejects_bad_fields(overrides: dict, message: str) -> None:
    with pytest.raises(TransformError, match=message):
        validate_receipt({**_VALID, **overrides})


def test_extract_receipt_sends_pdf_and_parses_noisy_json() -> None:
    generator = FakeGenerator(
        'Here you go: {"currency": "EUR", "total": 12.5, "vat": 2.25, "date": "2024-03-01", "payee": "Bar Centrale"}'
    )

    receipt = asyncio.run(extract_receipt(generator, b"%PDF-1.4 fake", policy=RetryPolicy(max_retries=0)))

    assert receipt["payee"] == "Bar Centrale"
    assert receipt["total"] == 12.5
    assert generator.calls[0]["pdf"] == b"%PDF-1.4 fake"
    assert generator.calls[0]["system"] == SYSTEM_PROMPT


def test_extract_receipt_without_json_fails() -> None:
    generator = FakeGenerator("I could not read this receipt.")

    with pytest.raises(TransformError):
        asyncio.run(extract_receipt(generator, b"%PDF", policy=RetryPolicy(max_retries=0)))
