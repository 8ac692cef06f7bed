"""
Logging setup for the analysis builder.

Modules call ``get_logger(__name__)``.  One stdout handler lives on the
``analysis_builder`` package logger and every module logger propagates to
it, so the level (``LOG_LEVEL``) is applied in one place.
"""
from __future__ import annotations

import logging
import sys

from analysis_builder.core.config import get_settings

PACKAGE_LOGGER = "analysis_builder"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _package_logger() -> logging.Logger:
    root = logging.getLogger(PACKAGE_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
        root.addHandler(handler)
        root.setLevel(getattr(logging, get_settings().log_level.upper(), logging.INFO))
    return root


def get_logger(name: str) -> logging.Logger:
    """Module logger; names outside the package are nested under it."""
    root = _package_logger()
    if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
        return logging.getLogger(name)
    return root.getChild(name)
