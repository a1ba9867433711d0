import asyncio
import io
from pathlib import Path

import pytest

from errors import ConfigError
from models import TransformOutcome
from nugget import RC_FILENAME, analyze_files, find_markdown_files, load_instructions, parse_args, write_suggestions
from retry_guard import RetryPolicy


class FakeGenerator:
    model = "fake"

    def __init__(self, fail_on: str | None = None) -> None:
        self.prompts: list[str] = []
        self.fail_on = fail_on

    async def generate(self, prompt: str, *, system=None, max_tokens=None, pdf=None) -> str:
        self.prompts.append(prompt)
        if self.fail_on and self.fail_on in prompt:
            raise ValueError("invalid request")
        return "## 1. A post idea"


def test_load_instructions_from_home(tmp_path: Path) -> None:
    (tmp_path / RC_FILENAME).write_text("  Write for engineers.\n", encoding="utf-8")

    assert load_instructions(home=tmp_path) == "Write for engineers."


def test_load_instructions_from_explicit_path(tmp_path: Path) -> None:
    path = tmp_path / "custom.txt"
    path.write_text("Be brief.", encoding="utf-8")

    assert load_instructions(str(path), home=tmp_path / "nowhere") == "Be brief."


def test_missing_instructions_raise_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="No instructions found"):
        load_instructions(home=tmp_path)
    with pytest.raises(ConfigError, match="Error reading instructions file"):
        load_instructions(str(tmp_path / "missing.txt"))


def test_find_markdown_files_is_recursive_and_sorted(tmp_path: Path) -> None:
    (tmp_path / "b.md").write_text("b")
    (tmp_path / "a.md").write_text("a")
    (tmp_path / "notes.txt").write_text("n")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "c.md").write_text("c")

    files = find_markdown_files(tmp_path)

    assert [p.relative_to(tmp_path).as_posix() for p in files] == ["a.md", "b.md", "nested/c.md"]


def test_analyze_files_embeds_instructions_and_content(tmp_path: Path) -> None:
    first = tmp_path / "first.md"
    first.write_text("Shipping the exporter", encoding="utf-8")
    second = tmp_path / "second.md"
    second.write_text("Broken draft", encoding="utf-8")
    generator = FakeGenerator(fail_on="Broken draft")

    outcomes = asyncio.run(
        analyze_files(generator, [first, second], "Write for engineers.", policy=RetryPolicy(max_retries=0), delay=0)
    )

    assert generator.prompts[0].startswith("Write for engineers.\n\nBased on these instructions")
    assert "Content to analyze:\nShipping the exporter" in generator.prompts[0]
    assert outcomes[0] == TransformOutcome.success("first.md", "## 1. A post idea")
    assert not outcomes[1].ok
    assert outcomes[1].error == "invalid request"


def test_write_suggestions_skips_failures() -> None:
    stream = io.StringIO()
    outcomes = [
        TransformOutcome.success("a.md", "Idea A"),
        TransformOutcome.failure("b.md", "boom"),
        TransformOutcome.success("c.md", "Idea C"),
    ]

    write_suggestions(outcomes, stream)

    assert stream.getvalue() == "# a.md\n\nIdea A\n\n# c.md\n\nIdea C\n\n"


def test_parse_args_defaults() -> None:
    args = parse_args(["notes"])

    assert args.directory == "notes"
    assert args.max_retries is None
    assert args.delay == 1000
