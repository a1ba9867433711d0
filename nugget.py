"""Suggest posts or blog topics for every Markdown file in a directory."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TextIO

from dotenv import load_dotenv

from cli_common import add_common_arguments, configure_logging, positive_int, run_cli
from concurrency import map_bounded
from errors import ConfigError
from llm_client import TextGenerator, build_generator
from models import TransformOutcome
from reporter import report
from retry_guard import DEFAULT_BASE_DELAY_MS, RetryPolicy, policy_from_env, with_retry

RC_FILENAME = ".nuggetrc"
SUGGESTION_MAX_TOKENS = 1000
FILE_DELAY_SECONDS = 0.2

PROMPT_TEMPLATE = """{instructions}

Based on these instructions, analyze this content and suggest 2-3 interesting LinkedIn posts or blog topics that would be valuable for my audience.

Content to analyze:
{content}

For each suggestion, provide your response in this exact markdown format:

## 1. [Title]

### Inspiration

[What piece of the content inspired this suggestion]

### Key Points

- [Point 1]
- [Point 2]
- [Point 3]

### Audience Value

[Why this resonates with the audience]

## 2. [Title]
[Same format as above]

## 3. [Title] (optional)
[Same format as above]"""

LOGGER = logging.getLogger(__name__)


def load_instructions(path: str | None = None, home: Path | None = None) -> str:
    """Read the analysis instructions from ``path`` or ``~/.nuggetrc``."""
    target = Path(path) if path else (home or Path.home()) / RC_FILENAME
    try:
        return target.read_text(encoding="utf-8").strip()
    except FileNotFoundError as exc:
        if path is None:
            raise ConfigError(
                f"No instructions found. Please create ~/{RC_FILENAME} or specify an instructions file with -i"
            ) from exc
        raise ConfigError(f"Error reading instructions file: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Error reading instructions file: {exc}") from exc


def find_markdown_files(directory: Path) -> list[Path]:
    return sorted(path for path in directory.rglob("*.md") if path.is_file())


async def analyze_files(
    generator: TextGenerator,
    files: list[Path],
    instructions: str,
    *,
    policy: RetryPolicy | None = None,
    delay: float = FILE_DELAY_SECONDS,
) -> list[TransformOutcome]:
    """Ask for suggestions one file at a time, pausing ``delay`` seconds between files."""
    policy = policy or RetryPolicy()

    async def analyze(path: Path) -> TransformOutcome:
        prompt = PROMPT_TEMPLATE.format(instructions=instructions, content=path.read_text(encoding="utf-8"))
        suggestions = await with_retry(
            lambda: generator.generate(prompt, max_tokens=SUGGESTION_MAX_TOKENS),
            policy,
            label=path.name,
        )
        return TransformOutcome.success(path.name, suggestions)

    def log_progress(done: int, total: int, outcome: TransformOutcome) -> None:
        LOGGER.info("Analyzed %s/%s files (%s)", done, total, outcome.item_id)

    return await map_bounded(
        files,
        analyze,
        1,
        delay_between=delay,
        item_id=lambda p: p.name,
        on_complete=log_progress,
    )


def write_suggestions(outcomes: list[TransformOutcome], stream: TextIO | None = None) -> None:
    out = stream or sys.stdout
    for outcome in outcomes:
        if outcome.ok and outcome.artifact:
            out.write(f"# {outcome.item_id}\n\n{outcome.artifact}\n\n")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="nugget",
        description="Analyze Markdown files and generate content suggestions with an LLM",
    )
    parser.add_argument("directory", help="Directory containing Markdown files")
    parser.add_argument("-m", "--model", help="Model to use (default depends on provider)")
    parser.add_argument("--provider", choices=("anthropic", "openai"), help="LLM provider (default: LLM_PROVIDER)")
    parser.add_argument("-i", "--instructions", help="Path to instructions file (defaults to ~/.nuggetrc)")
    parser.add_argument("-r", "--max-retries", type=positive_int, help="Maximum number of retries per file")
    parser.add_argument(
        "-d",
        "--delay",
        type=positive_int,
        default=DEFAULT_BASE_DELAY_MS,
        help="Initial delay between retries in ms",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    instructions = load_instructions(args.instructions)
    directory = Path(args.directory)
    if not directory.is_dir():
        raise ConfigError(f"Directory {directory} does not exist")
    generator = build_generator(args.provider, model=args.model)

    env_policy = policy_from_env()
    policy = RetryPolicy(
        max_retries=args.max_retries if args.max_retries is not None else env_policy.max_retries,
        base_delay=args.delay / 1000,
        max_delay=env_policy.max_delay,
    )

    LOGGER.info("Searching for Markdown files in %s...", directory)
    files = find_markdown_files(directory)
    if not files:
        LOGGER.warning("No Markdown files found.")
        return
    LOGGER.info("Found %s Markdown files", len(files))

    outcomes = await analyze_files(generator, files, instructions, policy=policy)
    write_suggestions(outcomes)
    report(outcomes, title="files")


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.verbose)
    sys.exit(run_cli(lambda: _run(args)))


if __name__ == "__main__":
    main()
