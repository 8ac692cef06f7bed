"""
Per-mode completeness rules.

Validation is evaluated on demand, never continuously.  An incomplete
configuration is not an exception: each rule that fails adds a
human-readable message to ``errors``; softer problems go to ``warnings``.

Rules
-----
Query      at least one metric, breakdown or filter in some tab; merge mode
           warns about tabs that will not line up with Q1
Funnel     cube, binding key, time dimension, >= 2 steps each with cube + name
Flow       cube, binding key, time dimension, event dimension, starting filter,
           depth within 0-5, known join strategy
Retention  cube, binding key, time dimension, parseable date range with
           start <= end, periods >= 1 (more than 52 is only a warning)
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from analysis_builder.query.date_ranges import parse_iso_date
from analysis_builder.query.query_builder import DATE_RANGE_OPERATOR, DEFAULT_GRANULARITY
from analysis_builder.query.types import (
    FLOW_MAX_DEPTH,
    FLOW_MIN_DEPTH,
    RETENTION_MAX_PERIODS,
    RETENTION_MIN_PERIODS,
    BreakdownSelection,
    Filter,
    FilterGroup,
    FlowModeState,
    FunnelModeState,
    QueryModeSlice,
    QueryModeState,
    RetentionModeState,
)

_ISO_DURATION = re.compile(
    r"^P(?!$)(\d+Y)?(\d+M)?(\d+W)?(\d+D)?(T(?=\d)(\d+H)?(\d+M)?(\d+(\.\d+)?S)?)?$"
)
_JOIN_STRATEGIES = ("auto", "lateral", "window")
_DEEP_FLOW_WARNING = 4


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {"isValid": self.is_valid, "errors": self.errors, "warnings": self.warnings}


# ── Query ───────────────────────────────────────────────


def validate_query(query_slice: QueryModeSlice) -> ValidationResult:
    result = ValidationResult()
    states = query_slice.query_states

    if not any(s.has_content for s in states):
        result.errors.append("Add at least one metric, breakdown or filter to run a query.")
        return result

    if len(states) > 1:
        for i, state in enumerate(states):
            if not state.has_content:
                result.warnings.append(f"Q{i + 1} is empty and will be ignored.")

    if query_slice.merge_strategy == "merge":
        if not states[0].breakdowns:
            result.warnings.append(
                "Merge mode aligns results on Q1's breakdowns; Q1 has none, so rows cannot be aligned."
            )
        result.warnings.extend(merge_warnings(states))
    if query_slice.merge_strategy == "funnel":
        result.warnings.append(
            "The 'funnel' merge strategy is deprecated. Use the dedicated funnel mode instead."
        )
    return result


# ── Merge checks ────────────────────────────────────────
# Merged rows are joined on Q1's breakdowns.  Only tabs with content are
# checked; messages keep the user's Q numbering.


def _granularity(breakdown: BreakdownSelection) -> str:
    return breakdown.granularity or DEFAULT_GRANULARITY


def _other_tabs(states: list[QueryModeState]) -> list[tuple[int, QueryModeState]]:
    return [(i, s) for i, s in enumerate(states) if i > 0 and s.has_content]


def breakdown_mismatches(states: list[QueryModeState]) -> list[str]:
    """Tabs whose own breakdowns differ from Q1's.  Tabs without any inherit Q1's."""
    reference = {b.field for b in states[0].breakdowns}
    mismatched = [
        f"Q{i + 1}"
        for i, state in _other_tabs(states)
        if state.breakdowns and {b.field for b in state.breakdowns} != reference
    ]
    if not mismatched:
        return []
    return [
        f"Queries have different breakdowns ({', '.join(mismatched)}); "
        "merge mode uses Q1's, so results may be unexpected."
    ]


def time_dimension_misalignments(states: list[QueryModeState]) -> list[str]:
    reference = [b for b in states[0].breakdowns if b.is_time_dimension]
    if not reference:
        return []
    warnings: list[str] = []
    for i, state in _other_tabs(states):
        if not state.breakdowns:
            continue
        own = {b.field: b for b in state.breakdowns if b.is_time_dimension}
        if not own:
            warnings.append(f'Q{i + 1} is missing time dimension "{reference[0].field}".')
            continue
        for ref in reference:
            match = own.get(ref.field)
            if match is not None and _granularity(match) != _granularity(ref):
                warnings.append(
                    f'Q{i + 1} uses "{_granularity(match)}" granularity '
                    f'but Q1 uses "{_granularity(ref)}".'
                )
    return warnings


def measure_collisions(states: list[QueryModeState]) -> list[str]:
    seen: dict[str, set[int]] = {}
    for i, state in enumerate(states):
        for metric in state.metrics:
            seen.setdefault(metric.field, set()).add(i)
    repeated = [measure for measure, where in seen.items() if len(where) > 1]
    if not repeated:
        return []
    names = '", "'.join(repeated)
    if len(repeated) == 1:
        return [f'Measure "{names}" appears in multiple queries; the first value will be used.']
    return [f'Measures "{names}" appear in multiple queries; the first value will be used.']


def _first_date_range(filters: list[Filter]) -> Any:
    for item in filters:
        if isinstance(item, FilterGroup):
            found = _first_date_range(item.filters)
            if found is not None:
                return found
        elif item.operator == DATE_RANGE_OPERATOR:
            value = item.date_range if item.date_range is not None else item.values
            return value if isinstance(value, str) else tuple(value)
    return None


def asymmetric_date_ranges(states: list[QueryModeState]) -> list[str]:
    ranges = {_first_date_range(s.filters) for s in states if s.has_content}
    if len(ranges) > 1:
        return [
            "Queries have different date ranges; "
            "some data points may be missing in merged results."
        ]
    return []


def merge_warnings(states: list[QueryModeState]) -> list[str]:
    if sum(1 for s in states if s.has_content) < 2:
        return []
    return [
        *breakdown_mismatches(states),
        *time_dimension_misalignments(states),
        *measure_collisions(states),
        *asymmetric_date_ranges(states),
    ]


# ── Funnel ──────────────────────────────────────────────


def validate_funnel(state: FunnelModeState) -> ValidationResult:
    result = ValidationResult()
    steps = state.funnel_steps

    if not state.funnel_cube:
        result.errors.append("Select a cube for the funnel.")
    if state.funnel_binding_key is None or not state.funnel_binding_key.is_set:
        result.errors.append("A binding key is required to link funnel steps.")
    if not state.funnel_time_dimension:
        result.errors.append("A time dimension is required for funnel ordering.")
    if len(steps) < 2:
        result.errors.append("A funnel requires at least 2 steps.")

    for i, step in enumerate(steps, start=1):
        if not step.cube:
            result.errors.append(f"Step {i} has no cube.")
        if not step.name.strip():
            result.errors.append(f"Step {i} has no name.")
        if not step.filters:
            result.warnings.append(f'Step {i} "{step.name}" has no filter; all events will match.')
        if step.time_to_convert and not _ISO_DURATION.match(step.time_to_convert):
            result.warnings.append(
                f"Step {i} time-to-convert '{step.time_to_convert}' is not an ISO-8601 duration."
            )

    names = [s.name.strip().lower() for s in steps if s.name.strip()]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        result.warnings.append(f"Duplicate step names: {', '.join(duplicates)}")
    return result


# ── Flow ────────────────────────────────────────────────


def validate_flow(state: FlowModeState) -> ValidationResult:
    result = ValidationResult()

    if not state.flow_cube:
        result.errors.append("Select a cube for flow analysis.")
    if state.flow_binding_key is None or not state.flow_binding_key.is_set:
        result.errors.append("Select a binding key to link events into paths.")
    if not state.flow_time_dimension:
        result.errors.append("Select a time dimension to order events.")
    if not state.event_dimension:
        result.errors.append("Select an event dimension for node labels.")
    if not state.starting_step.filters:
        result.errors.append("Define the starting step with at least one filter.")

    for label, depth in (("before", state.steps_before), ("after", state.steps_after)):
        if depth < FLOW_MIN_DEPTH or depth > FLOW_MAX_DEPTH:
            result.errors.append(
                f"Steps {label} must be between {FLOW_MIN_DEPTH} and {FLOW_MAX_DEPTH}."
            )
        elif depth >= _DEEP_FLOW_WARNING:
            result.warnings.append(f"{depth} steps {label} may be slow on large datasets.")

    if state.join_strategy not in _JOIN_STRATEGIES:
        result.errors.append(
            f"Unknown join strategy '{state.join_strategy}'. Allowed: {', '.join(_JOIN_STRATEGIES)}"
        )
    if state.starting_step.filters and not state.starting_step.name.strip():
        result.warnings.append("The starting step has no name.")
    return result


# ── Retention ───────────────────────────────────────────


def validate_retention(state: RetentionModeState) -> ValidationResult:
    result = ValidationResult()

    if not state.retention_cube:
        result.errors.append("Select a cube for retention analysis.")
    if state.retention_binding_key is None or not state.retention_binding_key.is_set:
        result.errors.append("Select a user identifier (binding key) to track retention.")
    if not state.retention_time_dimension:
        result.errors.append("Select a timestamp dimension for the analysis.")

    date_range = state.retention_date_range
    if not date_range.start or not date_range.end:
        result.errors.append("A date range is required for retention analysis.")
    else:
        start = parse_iso_date(date_range.start)
        end = parse_iso_date(date_range.end)
        if start is None:
            result.errors.append(f"Invalid start date '{date_range.start}'.")
        if end is None:
            result.errors.append(f"Invalid end date '{date_range.end}'.")
        if start is not None and end is not None and start > end:
            result.errors.append("Start date must be before or equal to end date.")

    if state.retention_periods < RETENTION_MIN_PERIODS:
        result.errors.append("At least 1 retention period is required.")
    elif state.retention_periods > RETENTION_MAX_PERIODS:
        result.warnings.append(
            f"More than {RETENTION_MAX_PERIODS} periods may impact performance."
        )

    if state.retention_time_dimension and "." not in state.retention_time_dimension:
        result.warnings.append('Time dimension should be in the form "Cube.dimension".')
    return result
