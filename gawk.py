"""Rewrite the content and/or names of every text file in a directory with an LLM."""

from __future__ import annotations

import argparse
import fnmatch
import logging
import re
import sys
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from dotenv import load_dotenv

from cli_common import add_common_arguments, configure_logging, positive_int, run_cli
from concurrency import map_bounded
from errors import ConfigError, TransformError
from llm_client import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, TextGenerator, build_generator
from models import TransformOutcome
from reporter import report
from retry_guard import RetryPolicy, policy_from_env, with_retry
from sinks import backup_file

DEFAULT_CONCURRENCY = 3
BACKUP_DIR = ".gawk-backups"
MAX_FILE_SIZE = 100 * 1024 * 1024
MAX_FILENAME_LENGTH = 255
MIN_CONTENT_RATIO = 0.1

LOGGER = logging.getLogger(__name__)

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')
_SURROUNDING_QUOTES = re.compile(r"^['\"`]|['\"`]$")
_LEADING_FENCE = re.compile(r"^```[^\n]*\n")
_TRAILING_FENCE = re.compile(r"\n```\s*$")

FILENAME_PROMPT = """You are a file renaming tool. Your task is to transform the filename according to the instructions below.

CRITICAL INSTRUCTIONS:
1. You MUST output ONLY the new filename
2. Do NOT include ANY explanations, quotes, or additional text
3. Do NOT include file paths - only the filename
4. Preserve the file extension unless specifically instructed otherwise
5. All filenames must be valid (no < > : " / \\ | ? * characters)
6. If unsure about any aspect, preserve the original filename
7. Maximum filename length: 255 characters

Current filename: {filename}

{context}
Transformation instructions: {instructions}

REMINDER: Respond with ONLY the new filename. Any additional text will break the system."""

CONTENT_PROMPT = """You are a file content transformation tool. Your task is to transform the file content according to the instructions below.

CRITICAL INSTRUCTIONS:
1. You MUST output ONLY the transformed content
2. Do NOT include ANY explanations, markdown formatting, or additional text
3. Do NOT include "```" code blocks or any other formatting
4. Preserve the original format (indentation, line endings, etc.) unless instructed otherwise
5. If unsure about any aspect, preserve the original content
6. Maintain the same character encoding as the input

Current filename for context: {filename}

Original content:
```
{content}
```

Transformation instructions: {instructions}

REMINDER: Respond with ONLY the transformed content. Any additional text, formatting, or explanations will break the system.

Begin transformed content below this line (no additional formatting or text):
"""


@dataclass(frozen=True, slots=True)
class GawkOptions:
    directory: Path
    content_prompt: str | None = None
    filename_prompt: str | None = None
    concurrency: int = DEFAULT_CONCURRENCY
    max_tokens: int = DEFAULT_MAX_TOKENS
    backup: bool = False
    recursive: bool = True
    ignore: str | None = None

    @property
    def backup_dir(self) -> Path:
        return self.directory / BACKUP_DIR

    @property
    def filename_needs_content(self) -> bool:
        return bool(self.filename_prompt and "content" in self.filename_prompt.lower())


def collect_files(directory: Path, ignore: str | None = None, recursive: bool = True) -> list[Path]:
    """Non-hidden files under ``directory`` in a stable, sorted order."""
    files: list[Path] = []
    for entry in sorted(directory.iterdir()):
        if entry.name.startswith(".") or (ignore and fnmatch.fnmatch(entry.name, ignore)):
            continue
        if entry.is_dir():
            if recursive:
                files.extend(collect_files(entry, ignore, recursive))
        elif entry.is_file():
            files.append(entry)
    return files


def is_processable(path: Path) -> bool:
    """True for files small enough that look like UTF-8 text."""
    try:
        if path.stat().st_size > MAX_FILE_SIZE:
            return False
        with path.open("rb") as handle:
            head = handle.read(8192)
    except OSError as exc:
        LOGGER.warning("Error checking file %s: %s", path, exc)
        return False
    if b"\x00" in head:
        return False
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte character cut at the read boundary is still text.
        return exc.start >= len(head) - 3
    return True


def clean_filename(response: str, original_name: str) -> str:
    """Strip quotes, keep the original extension, cap length, replace invalid characters."""
    name = _SURROUNDING_QUOTES.sub("", response.strip()).strip()
    if not name:
        raise TransformError("Invalid filename transformation: empty response")

    original_suffix = Path(original_name).suffix
    if original_suffix and not Path(name).suffix:
        name += original_suffix
    if len(name) > MAX_FILENAME_LENGTH:
        name = name[: MAX_FILENAME_LENGTH - len(original_suffix)] + original_suffix
    return _INVALID_FILENAME_CHARS.sub("_", name)


def clean_content(response: str, original: str) -> str:
    """Remove code fences and reject empty or drastically shortened output."""
    content = _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", response))
    if not content.strip() or len(content) < len(original) * MIN_CONTENT_RATIO:
        raise TransformError("Invalid content transformation: response too short or empty")
    return content


class FileTransformer:
    """Applies the configured content and filename prompts to one file at a time."""

    def __init__(self, generator: TextGenerator, options: GawkOptions, policy: RetryPolicy | None = None) -> None:
        self.generator = generator
        self.options = options
        self.policy = policy or RetryPolicy()

    async def _ask(self, prompt: str, label: str) -> str:
        return await with_retry(
            lambda: self.generator.generate(prompt, max_tokens=self.options.max_tokens),
            self.policy,
            label=label,
        )

    async def transform_content(self, path: Path, original: str) -> str:
        prompt = CONTENT_PROMPT.format(
            filename=path.name,
            content=original,
            instructions=self.options.content_prompt,
        )
        return clean_content(await self._ask(prompt, f"content of {path.name}"), original)

    async def transform_filename(self, path: Path, content: str | None) -> Path:
        context = f"File content for context:\n```\n{content}\n```\n" if content else ""
        prompt = FILENAME_PROMPT.format(
            filename=path.name,
            context=context,
            instructions=self.options.filename_prompt,
        )
        return path.with_name(clean_filename(await self._ask(prompt, f"name of {path.name}"), path.name))

    async def __call__(self, path: Path) -> TransformOutcome:
        options = self.options
        ident = str(path.relative_to(options.directory))
        if options.content_prompt and not is_processable(path):
            return TransformOutcome.failure(ident, "File is not processable (may be binary or too large)")

        original: str | None = None
        if options.content_prompt or options.filename_needs_content:
            original = path.read_text(encoding="utf-8")

        new_content = await self.transform_content(path, original) if options.content_prompt else None
        content_changed = new_content is not None and new_content != original

        new_path = await self.transform_filename(path, original) if options.filename_prompt else path
        name_changed = new_path != path
        if name_changed and new_path.exists():
            return TransformOutcome.failure(ident, f"Target file {new_path.name} already exists")

        if (content_changed or name_changed) and options.backup:
            backup_file(path, options.backup_dir, root=options.directory)

        if content_changed:
            new_path.write_text(new_content, encoding="utf-8")
            if name_changed:
                path.unlink()
        elif name_changed:
            path.rename(new_path)

        return TransformOutcome.success(
            ident,
            new_path,
            changed=content_changed or name_changed,
            content_changed=content_changed,
            name_changed=name_changed,
            original_path=path,
        )


def format_directory_report(outcomes: Sequence[TransformOutcome], options: GawkOptions) -> str:
    """Per-directory tallies plus the list of renames."""
    stats: dict[Path, dict[str, int]] = defaultdict(lambda: {"content": 0, "renamed": 0, "unchanged": 0})
    renames: list[tuple[str, str]] = []
    for outcome in outcomes:
        if not outcome.ok:
            continue
        original: Path = outcome.details["original_path"]
        entry = stats[original.parent]
        if outcome.details["content_changed"]:
            entry["content"] += 1
        if outcome.details["name_changed"]:
            entry["renamed"] += 1
            renames.append((original.name, outcome.artifact.name))
        if not outcome.changed:
            entry["unchanged"] += 1

    lines: list[str] = []
    for directory in sorted(stats):
        entry = stats[directory]
        lines.append(f"Directory: {directory}")
        if options.content_prompt:
            lines.append(f"  - {entry['content']} files had content changed")
        if options.filename_prompt:
            lines.append(f"  - {entry['renamed']} files were renamed")
        lines.append(f"  - {entry['unchanged']} files unchanged")
    if renames:
        lines += ["", "Renamed files:"]
        lines += [f"  {old} -> {new}" for old, new in renames]
    if options.backup:
        lines += ["", f"Backups created in {options.backup_dir}/"]
    return "\n".join(lines)


def dry_run(files: Sequence[Path], options: GawkOptions, stream: TextIO | None = None) -> None:
    out = stream or sys.stdout
    print("Dry run - files that would be processed:", file=out)
    for path in files:
        processable = is_processable(path) if options.content_prompt else True
        suffix = "" if processable else " (would be skipped)"
        print(f"  {'✓' if processable else '✗'} {path.relative_to(options.directory)}{suffix}", file=out)


async def process_directory(
    generator: TextGenerator,
    options: GawkOptions,
    *,
    policy: RetryPolicy | None = None,
    stream: TextIO | None = None,
) -> list[TransformOutcome]:
    """Transform every collected file with bounded concurrency and print the report.

    Args:
        generator: Text generator used for both prompts.
        options: What to transform and how.
        policy: Retry policy for the generator calls.
        stream: Where the directory report goes (stderr by default).
    """
    files = collect_files(options.directory, options.ignore, options.recursive)
    LOGGER.info("Found %s files", len(files))

    def log_progress(done: int, total: int, outcome: TransformOutcome) -> None:
        LOGGER.info("[%s/%s] %s %s", done, total, "done" if outcome.ok else "failed", outcome.item_id)

    outcomes = await map_bounded(
        files,
        FileTransformer(generator, options, policy),
        options.concurrency,
        item_id=lambda p: str(p.relative_to(options.directory)),
        on_complete=log_progress,
    )
    report(outcomes, title="files", show_changes=True, stream=stream)
    print(format_directory_report(outcomes, options), file=stream or sys.stderr)
    return outcomes


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="gawk", description="Transform files in a directory with an LLM")
    parser.add_argument("directory", help="Directory containing files to process")
    parser.add_argument("--content-prompt", help="Prompt for content transformation")
    parser.add_argument("--filename-prompt", help="Prompt for filename transformation")
    parser.add_argument(
        "-c",
        "--concurrency",
        type=positive_int,
        default=DEFAULT_CONCURRENCY,
        help="Number of files to process in parallel",
    )
    parser.add_argument("-m", "--model", help="Model to use (default depends on provider)")
    parser.add_argument("--provider", choices=("anthropic", "openai"), help="LLM provider (default: LLM_PROVIDER)")
    parser.add_argument("-t", "--temperature", type=float, default=DEFAULT_TEMPERATURE, help="Sampling temperature")
    parser.add_argument("--max-tokens", type=positive_int, default=DEFAULT_MAX_TOKENS, help="Maximum tokens per response")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be processed without making changes")
    parser.add_argument("--backup", action="store_true", help="Create backups of files before changing them")
    parser.add_argument("--ignore", help="Glob pattern of file names to ignore")
    parser.add_argument(
        "--recursive",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Process subdirectories recursively",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


def build_options(args: argparse.Namespace) -> GawkOptions:
    if not args.content_prompt and not args.filename_prompt:
        raise ConfigError("Must specify at least one of --content-prompt or --filename-prompt")
    directory = Path(args.directory)
    if not directory.is_dir():
        raise ConfigError(f"Directory {directory} does not exist")
    return GawkOptions(
        directory=directory,
        content_prompt=args.content_prompt,
        filename_prompt=args.filename_prompt,
        concurrency=args.concurrency,
        max_tokens=args.max_tokens,
        backup=args.backup,
        recursive=args.recursive,
        ignore=args.ignore,
    )


async def _run(args: argparse.Namespace) -> None:
    options = build_options(args)
    if args.dry_run:
        dry_run(collect_files(options.directory, options.ignore, options.recursive), options)
        return
    generator = build_generator(
        args.provider,
        model=args.model,
        max_tokens=args.max_tokens,
        temperature=args.temperature,
    )
    await process_directory(generator, options, policy=policy_from_env())


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.verbose)
    sys.exit(run_cli(lambda: _run(args)))


if __name__ == "__main__":
    main()
