"""On-disk key -> JSON cache used to skip redundant work on re-runs."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)


class JsonCache:
    """Stores one JSON file per key under ``directory``.

    Entries are never evicted or invalidated. Keys are hashed into filenames,
    so any identifier (URL, item id) is safe to use.
    """

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._directory / f"{digest}.json"

    def get(self, key: str) -> Any | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Ignoring unreadable cache entry %s: %s", path.name, exc)
            return None
        if not isinstance(entry, dict) or "value" not in entry:
            return None
        return entry["value"]

    def put(self, key: str, value: Any) -> None:
        entry = {
            "key": key,
            "value": value,
            "created_at": datetime.now(UTC).isoformat(),
        }
        self.path_for(key).write_text(json.dumps(entry, indent=2, ensure_ascii=False), encoding="utf-8")

    async def get_or_create(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for ``key`` or build, store and return it."""
        cached = await asyncio.to_thread(self.get, key)
        if cached is not None:
            LOGGER.debug("Cache hit for %s", key)
            return cached
        value = await factory()
        await asyncio.to_thread(self.put, key, value)
        return value
