"""
Shared FastAPI dependencies.

Routers receive storage through ``get_store`` so tests can swap in an
``InMemoryStore`` with ``app.dependency_overrides``.
"""
from __future__ import annotations

from functools import lru_cache

from analysis_builder.persistence.storage import KeyValueStore, SqlKeyValueStore


@lru_cache
def _default_store() -> SqlKeyValueStore:
    return SqlKeyValueStore()


def get_store() -> KeyValueStore:
    return _default_store()
