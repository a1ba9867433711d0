"""Output helpers shared by the tools: files, stdout, CSV and backups."""

from __future__ import annotations

import csv
import hashlib
import logging
import re
import shutil
import sys
import time
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, TextIO

LOGGER = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")


def safe_filename(title: str, *, lower: bool = False) -> str:
    """Replace every non-alphanumeric character with an underscore."""
    name = _UNSAFE_CHARS.sub("_", title.strip()) or "untitled"
    return name.lower() if lower else name


def claim_filename(name: str, key: str, taken: set[str]) -> str:
    """Reserve ``name`` in ``taken``; a name already taken gets a short hash of ``key``.

    The first claimant keeps the plain name.
    """
    path = Path(name)
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:8]
    candidate = name
    counter = 0
    while candidate in taken:
        counter += 1
        tail = digest if counter == 1 else f"{digest}_{counter}"
        candidate = f"{path.stem}_{tail}{path.suffix}"
    taken.add(candidate)
    return candidate


def write_text(path: Path, content: str) -> Path:
    """Write ``content`` to ``path``, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    LOGGER.debug("Wrote %s", path)
    return path


def backup_file(path: Path, backup_dir: Path, *, root: Path | None = None) -> Path:
    """Copy ``path`` into ``backup_dir`` before it gets overwritten.

    With ``root`` the directory structure relative to it is mirrored. The
    copy gets a short hash suffix so repeated backups never collide.
    """
    relative_parent = path.parent.relative_to(root) if root is not None else Path()
    target_dir = backup_dir / relative_parent
    target_dir.mkdir(parents=True, exist_ok=True)
    digest = hashlib.md5(f"{path.name}{time.time_ns()}".encode("utf-8")).hexdigest()[:8]
    target = target_dir / f"{path.name}.{digest}.backup"
    shutil.copy2(path, target)
    return target


def emit(content: str, output: str | None = None, *, stream: TextIO | None = None) -> None:
    """Write ``content`` to the ``output`` file, or to stdout when none is given."""
    if output:
        write_text(Path(output), content)
        return
    target = stream or sys.stdout
    target.write(content)
    if not content.endswith("\n"):
        target.write("\n")


def write_csv(
    rows: Iterable[dict[str, Any]],
    columns: Sequence[str],
    stream: TextIO | None = None,
) -> None:
    """Write rows with a header in a fixed column order."""
    writer = csv.DictWriter(stream or sys.stdout, fieldnames=list(columns), lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
