"""
Date-range parsing and the prior-period calculation used for comparisons.

A date range on a filter is either an ISO pair ``["2024-01-01", "2024-01-31"]``,
a single ISO date, or a relative phrase such as ``"last 3 months"`` or
``"this quarter"``.  Everything resolves to a pair of ``datetime.date``
objects; ``today`` is injectable so tests are deterministic.
"""
from __future__ import annotations

import calendar
import re
from datetime import date, timedelta
from typing import Any

DEFAULT_RETENTION_PRESET = "last_3_months"

_LAST_N = re.compile(r"^last\s+(\d+)\s+(day|week|month|year)s?$")


# ── Helpers ─────────────────────────────────────────────


def parse_iso_date(value: Any) -> date | None:
    """``"2024-03-01"`` or ``"2024-03-01T00:00:00.000"`` -> date; anything else -> None."""
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def format_date(value: date) -> str:
    return value.isoformat()


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + delta
    return total // 12, total % 12 + 1


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def _quarter_bounds(year: int, quarter: int) -> tuple[date, date]:
    first_month = (quarter - 1) * 3 + 1
    start, _ = _month_bounds(year, first_month)
    _, end = _month_bounds(year, first_month + 2)
    return start, end


# ── Relative phrases ────────────────────────────────────


def parse_relative_date_range(text: str, today: date | None = None) -> tuple[date, date] | None:
    """Resolve a relative phrase against ``today``.  Unknown phrases -> None."""
    today = today or date.today()
    phrase = " ".join(text.lower().split())

    if phrase == "today":
        return today, today
    if phrase == "yesterday":
        day = today - timedelta(days=1)
        return day, day

    monday = today - timedelta(days=today.weekday())
    if phrase == "this week":
        return monday, monday + timedelta(days=6)
    if phrase == "last week":
        return monday - timedelta(days=7), monday - timedelta(days=1)

    if phrase == "this month":
        return _month_bounds(today.year, today.month)
    if phrase == "last month":
        return _month_bounds(*_shift_month(today.year, today.month, -1))

    quarter = (today.month - 1) // 3 + 1
    if phrase == "this quarter":
        return _quarter_bounds(today.year, quarter)
    if phrase == "last quarter":
        if quarter == 1:
            return _quarter_bounds(today.year - 1, 4)
        return _quarter_bounds(today.year, quarter - 1)

    if phrase == "this year":
        return date(today.year, 1, 1), date(today.year, 12, 31)
    if phrase == "last year":
        return date(today.year - 1, 1, 1), date(today.year - 1, 12, 31)

    match = _LAST_N.match(phrase)
    if not match:
        return None
    amount, unit = int(match.group(1)), match.group(2)
    if amount < 1:
        return None
    if unit == "day":
        return today - timedelta(days=amount - 1), today
    if unit == "week":
        return today - timedelta(days=amount * 7 - 1), today
    if unit == "month":
        year, month = _shift_month(today.year, today.month, -(amount - 1))
        return date(year, month, 1), today
    return date(today.year - amount, 1, 1), today


def parse_date_range(date_range: Any, today: date | None = None) -> tuple[date, date] | None:
    """Resolve any accepted date-range shape to ``(start, end)``."""
    if date_range is None:
        return None
    if isinstance(date_range, (list, tuple)):
        if not date_range:
            return None
        start = parse_iso_date(date_range[0])
        end = parse_iso_date(date_range[1] if len(date_range) > 1 else date_range[0])
        if start is None or end is None:
            return None
        return start, end
    if not isinstance(date_range, str):
        return None
    single = parse_iso_date(date_range.strip())
    if single is not None:
        return single, single
    return parse_relative_date_range(date_range, today)


# ── Comparison ──────────────────────────────────────────


def calculate_prior_period(start: date, end: date) -> tuple[date, date]:
    """Same-length window immediately preceding ``[start, end]`` (inclusive)."""
    length_days = max((end - start).days, 0) + 1
    prior_end = start - timedelta(days=1)
    prior_start = prior_end - timedelta(days=length_days - 1)
    return prior_start, prior_end


# ── Retention presets ───────────────────────────────────

RETENTION_PRESETS: tuple[str, ...] = (
    "last_30_days",
    "last_3_months",
    "last_6_months",
    "last_12_months",
    "this_year",
    "last_year",
)


def date_range_from_preset(preset: str, today: date | None = None) -> tuple[str, str]:
    """Retention date-range preset -> ISO ``(start, end)``.  Unknown presets use the default."""
    today = today or date.today()
    if preset == "last_30_days":
        start, end = today - timedelta(days=30), today
    elif preset == "last_6_months":
        start, end = _whole_months_back(today, 6)
    elif preset == "last_12_months":
        start, end = _whole_months_back(today, 12)
    elif preset == "this_year":
        start, end = date(today.year, 1, 1), today
    elif preset == "last_year":
        start, end = date(today.year - 1, 1, 1), date(today.year - 1, 12, 31)
    else:
        start, end = _whole_months_back(today, 3)
    return format_date(start), format_date(end)


def _whole_months_back(today: date, months: int) -> tuple[date, date]:
    """First day of the month ``months`` ago through the last day of the previous month."""
    start, _ = _month_bounds(*_shift_month(today.year, today.month, -months))
    _, end = _month_bounds(*_shift_month(today.year, today.month, -1))
    return start, end
