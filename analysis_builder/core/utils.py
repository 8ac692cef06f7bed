"""
Small shared utilities.
"""
from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Generator


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def generate_id() -> str:
    """Short random identifier for selection items (unique within one mode)."""
    return uuid.uuid4().hex[:12]


def generate_metric_label(index: int) -> str:
    """Spreadsheet-style letter label: 0 -> A, 25 -> Z, 26 -> AA, 27 -> AB."""
    label = ""
    n = index
    while True:
        label = chr(65 + n % 26) + label
        n = n // 26 - 1
        if n < 0:
            return label
