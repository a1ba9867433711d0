"""Shared typed models for the batch tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One batch of items from a paginated API.

    ``next_cursor`` is None exactly when no further pages exist.
    """

    items: list[T]
    next_cursor: str | None = None
    total_count: int | None = None


@dataclass(slots=True)
class RetryState:
    """Mutable bookkeeping for a single guarded call."""

    attempt: int = 0
    delay: float = 0.0
    last_error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class TransformOutcome:
    """Result of converting one item into output artifacts."""

    item_id: str
    ok: bool
    artifact: Any = None
    error: str | None = None
    changed: bool = True
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(
        cls,
        item_id: str,
        artifact: Any = None,
        *,
        changed: bool = True,
        **details: Any,
    ) -> TransformOutcome:
        return cls(item_id=item_id, ok=True, artifact=artifact, changed=changed, details=details)

    @classmethod
    def failure(cls, item_id: str, reason: str) -> TransformOutcome:
        return cls(item_id=item_id, ok=False, error=reason, changed=False)


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Counts derived from a batch of outcomes."""

    total: int
    succeeded: int
    failed: int
    changed: int
    unchanged: int
    failures: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    def days(self) -> list[date]:
        span = (self.end - self.start).days
        return [self.start + timedelta(days=offset) for offset in range(span + 1)]

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end
