"""
Recently used fields, most recent first.

    {"metrics": ["Orders.count", ...], "breakdowns": ["Orders.status", ...]}

Bounded to ``MAX_RECENT_FIELDS`` per category and de-duplicated.  Reads
and writes are best-effort like the workspace store.
"""
from __future__ import annotations

import json
from typing import Literal

from analysis_builder.core.logging import get_logger
from analysis_builder.persistence.storage import KeyValueStore

logger = get_logger(__name__)

RECENT_FIELDS_STORAGE_KEY = "analysis-builder-recent-fields"
MAX_RECENT_FIELDS = 10
RecentCategory = Literal["metrics", "breakdowns"]
CATEGORIES: tuple[str, ...] = ("metrics", "breakdowns")


def _empty() -> dict[str, list[str]]:
    return {c: [] for c in CATEGORIES}


def push_recent(fields: list[str], field: str, limit: int = MAX_RECENT_FIELDS) -> list[str]:
    """Move ``field`` to the front, drop duplicates, cap at ``limit``."""
    return [field, *(f for f in fields if f != field)][:limit]


class RecentFields:
    def __init__(self, store: KeyValueStore, key: str = RECENT_FIELDS_STORAGE_KEY) -> None:
        self._store = store
        self._key = key

    def get(self) -> dict[str, list[str]]:
        try:
            raw = self._store.get(self._key)
        except Exception:
            logger.exception("Recent fields read failed -- returning empty lists")
            return _empty()
        if not raw:
            return _empty()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Recent fields blob is not valid JSON -- ignoring it")
            return _empty()
        if not isinstance(data, dict):
            return _empty()
        result = _empty()
        for category in CATEGORIES:
            values = data.get(category)
            if isinstance(values, list):
                result[category] = [v for v in values if isinstance(v, str)][:MAX_RECENT_FIELDS]
        return result

    def add(self, field: str, category: RecentCategory) -> dict[str, list[str]]:
        if category not in CATEGORIES:
            raise ValueError(f"Unknown recent-field category '{category}'. Allowed: {', '.join(CATEGORIES)}")
        current = self.get()
        current[category] = push_recent(current[category], field)
        try:
            self._store.set(self._key, json.dumps(current))
        except Exception:
            logger.exception("Recent fields write failed -- continuing")
        return current

    def clear(self) -> None:
        try:
            self._store.delete(self._key)
        except Exception:
            logger.exception("Recent fields clear failed -- continuing")
