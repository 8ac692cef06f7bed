"""
Key-value storage backends.

The builder persists two blobs under fixed keys (the workspace and the
recent-fields list).  ``InMemoryStore`` serves tests and embedded use;
``SqlKeyValueStore`` keeps them in a SQL table via SQLAlchemy.

The table is created automatically on first use via ``ensure_table()``.
"""
from __future__ import annotations

from typing import Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine

from analysis_builder.core.logging import get_logger
from analysis_builder.db.connection import get_engine

logger = get_logger(__name__)

_TABLE = "analysis_builder_kv"

_CREATE_SQL = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    key         VARCHAR(200) PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SqlKeyValueStore:
    """Durable store backed by one SQL table (SQLite or Postgres)."""

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine or get_engine()
        self._ready = False

    def ensure_table(self) -> None:
        if self._ready:
            return
        with self._engine.begin() as conn:
            conn.execute(text(_CREATE_SQL))
        self._ready = True
        logger.info("Key-value table '%s' ensured", _TABLE)

    def get(self, key: str) -> str | None:
        self.ensure_table()
        with self._engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT value FROM {_TABLE} WHERE key = :key"), {"key": key}
            ).first()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        self.ensure_table()
        upsert = text(f"""
            INSERT INTO {_TABLE} (key, value, updated_at)
            VALUES (:key, :value, CURRENT_TIMESTAMP)
            ON CONFLICT (key) DO UPDATE
                SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
        """)
        with self._engine.begin() as conn:
            conn.execute(upsert, {"key": key, "value": value})
        logger.debug("Stored key=%s  bytes=%d", key, len(value))

    def delete(self, key: str) -> None:
        self.ensure_table()
        with self._engine.begin() as conn:
            conn.execute(text(f"DELETE FROM {_TABLE} WHERE key = :key"), {"key": key})
