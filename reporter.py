"""Human-readable run summaries built from per-item outcomes."""

from __future__ import annotations

import logging
import sys
from collections.abc import Sequence
from typing import TextIO

from models import RunSummary, TransformOutcome

LOGGER = logging.getLogger(__name__)


def summarize(outcomes: Sequence[TransformOutcome]) -> RunSummary:
    """Count successes, failures and changed/unchanged items."""
    succeeded = [o for o in outcomes if o.ok]
    failed = [o for o in outcomes if not o.ok]
    changed = sum(1 for o in succeeded if o.changed)
    return RunSummary(
        total=len(outcomes),
        succeeded=len(succeeded),
        failed=len(failed),
        changed=changed,
        unchanged=len(succeeded) - changed,
        failures=tuple((o.item_id, o.error or "unknown error") for o in failed),
    )


def format_summary(
    summary: RunSummary,
    *,
    title: str = "items",
    show_changes: bool = False,
) -> str:
    """Render a summary as deterministic plain text."""
    lines = [
        "",
        "Processing complete:",
        f"  Succeeded: {summary.succeeded}/{summary.total} {title}",
    ]
    if show_changes:
        lines.append(f"    - {summary.changed} changed")
        lines.append(f"    - {summary.unchanged} unchanged")
    if summary.failed:
        lines.append(f"  Failed: {summary.failed} {title}")
        for item_id, reason in summary.failures:
            lines.append(f"    - {item_id}: {reason}")
    return "\n".join(lines)


def report(
    outcomes: Sequence[TransformOutcome],
    *,
    title: str = "items",
    show_changes: bool = False,
    stream: TextIO | None = None,
) -> RunSummary | None:
    """Print a summary to ``stream`` (stderr by default).

    Never raises: a broken summary must not change the run's exit status.
    """
    try:
        summary = summarize(outcomes)
        print(format_summary(summary, title=title, show_changes=show_changes), file=stream or sys.stderr)
        return summary
    except Exception as exc:  # reporting is best-effort
        LOGGER.warning("Could not print run summary (non-fatal): %s", exc)
        return None
