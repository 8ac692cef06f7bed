"""SQLAlchemy engine factory.

Single shared engine for the durable key-value store.  SQLite is the
default; any SQLAlchemy URL (e.g. Postgres) works through ``STORAGE_URL``.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url

from analysis_builder.core.config import get_settings
from analysis_builder.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def create_storage_engine(url: str) -> Engine:
    """Build an engine for ``url``; pool sizing only applies to server databases."""
    kwargs: dict[str, Any] = {"pool_pre_ping": True, "echo": False}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=10)
    engine = create_engine(url, **kwargs)
    parsed = make_url(url)
    logger.info("Storage engine created  driver=%s  db=%s", parsed.drivername, parsed.database)
    return engine


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        _engine = create_storage_engine(get_settings().storage_url)
    return _engine


def dispose_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
