"""
Query Builder -- turns query-mode selections into an executable request.

Single tab:
    {"measures": [...], "dimensions": [...], "timeDimensions": [...],
     "filters": [...], "order": {...}}

Several tabs with content:
    {"queries": [...], "mergeStrategy": "...", "mergeKeys": [...],
     "queryLabels": ["Q1", "Q2", ...]}

Empty collections are omitted, never sent as ``[]``.
"""
from __future__ import annotations

from datetime import date
from typing import Any

from analysis_builder.core.logging import get_logger
from analysis_builder.core.utils import generate_metric_label
from analysis_builder.query.date_ranges import (
    calculate_prior_period,
    format_date,
    parse_date_range,
)
from analysis_builder.query.types import (
    BreakdownSelection,
    Filter,
    FilterGroup,
    MetricSelection,
    QueryModeSlice,
    QueryModeState,
    SimpleFilter,
    coerce_filters,
    filters_to_dicts,
)

logger = get_logger(__name__)

DATE_RANGE_OPERATOR = "inDateRange"
DEFAULT_GRANULARITY = "day"


# ── Single query ────────────────────────────────────────


def build_query(
    metrics: list[MetricSelection],
    breakdowns: list[BreakdownSelection],
    filters: list[Filter] | None = None,
    order: dict[str, str] | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """Build one query request from a tab's selections."""
    filters = coerce_filters(filters)

    measures = [m.field for m in metrics]
    dimensions = [b.field for b in breakdowns if not b.is_time_dimension]
    time_dimensions: list[dict[str, Any]] = []
    for breakdown in breakdowns:
        if not breakdown.is_time_dimension:
            continue
        entry: dict[str, Any] = {
            "dimension": breakdown.field,
            "granularity": breakdown.granularity or DEFAULT_GRANULARITY,
        }
        if breakdown.enable_comparison:
            compare = build_compare_date_range(breakdown.field, filters, today=today)
            if compare is not None:
                entry["compareDateRange"] = compare
        time_dimensions.append(entry)

    query: dict[str, Any] = {}
    if measures:
        query["measures"] = measures
    if dimensions:
        query["dimensions"] = dimensions
    if time_dimensions:
        query["timeDimensions"] = time_dimensions
    if filters:
        query["filters"] = filters_to_dicts(filters)
    if order:
        query["order"] = dict(order)
    return query


def find_date_filter(field: str, filters: list[Filter]) -> SimpleFilter | None:
    """First ``inDateRange`` filter on ``field``, searched depth-first through groups."""
    for item in filters:
        if isinstance(item, FilterGroup):
            found = find_date_filter(field, item.filters)
            if found is not None:
                return found
        elif item.member == field and item.operator == DATE_RANGE_OPERATOR:
            return item
    return None


def build_compare_date_range(
    field: str,
    filters: list[Filter] | None,
    today: date | None = None,
) -> list[list[str]] | None:
    """``[[current_start, current_end], [prior_start, prior_end]]`` for ``field``, or None."""
    match = find_date_filter(field, coerce_filters(filters))
    if match is None:
        return None
    raw = match.date_range if match.date_range is not None else (match.values or None)
    parsed = parse_date_range(raw, today=today)
    if parsed is None:
        logger.debug("Unparseable date range on %s: %r", field, raw)
        return None
    start, end = parsed
    prior_start, prior_end = calculate_prior_period(start, end)
    return [
        [format_date(start), format_date(end)],
        [format_date(prior_start), format_date(prior_end)],
    ]


# ── Multi-query ─────────────────────────────────────────


def effective_breakdowns(query_slice: QueryModeSlice, index: int) -> list[BreakdownSelection]:
    """Breakdowns of tab ``index``; in merge mode every tab reads tab 1's."""
    states = query_slice.query_states
    if query_slice.merge_strategy == "merge" and index > 0 and states:
        return list(states[0].breakdowns)
    return list(states[index].breakdowns)


def get_merge_keys(query_slice: QueryModeSlice) -> list[str] | None:
    """Tab 1 breakdown fields when merging, else None."""
    if query_slice.merge_strategy != "merge" or not query_slice.query_states:
        return None
    keys = [b.field for b in query_slice.query_states[0].breakdowns]
    return keys or None


def _build_tab(query_slice: QueryModeSlice, index: int, today: date | None) -> dict[str, Any]:
    state: QueryModeState = query_slice.query_states[index]
    return build_query(
        state.metrics,
        effective_breakdowns(query_slice, index),
        state.filters,
        state.order,
        today=today,
    )


def build_all_queries(query_slice: QueryModeSlice, today: date | None = None) -> list[dict[str, Any]]:
    return [_build_tab(query_slice, i, today) for i in range(len(query_slice.query_states))]


def is_multi_query_mode(query_slice: QueryModeSlice) -> bool:
    """True when more than one tab has any content."""
    return sum(1 for s in query_slice.query_states if s.has_content) > 1


def build_multi_query_config(
    query_slice: QueryModeSlice,
    today: date | None = None,
) -> dict[str, Any] | None:
    if not is_multi_query_mode(query_slice):
        return None
    queries = build_all_queries(query_slice, today=today)
    config: dict[str, Any] = {
        "queries": queries,
        "mergeStrategy": query_slice.merge_strategy,
    }
    merge_keys = get_merge_keys(query_slice)
    if merge_keys:
        config["mergeKeys"] = merge_keys
    config["queryLabels"] = [f"Q{i + 1}" for i in range(len(queries))]
    return config


def build_query_request(query_slice: QueryModeSlice, today: date | None = None) -> dict[str, Any]:
    """Multi-query config when several tabs have content, else the active tab's query."""
    multi = build_multi_query_config(query_slice, today=today)
    if multi is not None:
        return multi
    if not query_slice.query_states:
        return {}
    index = min(max(query_slice.active_query_index, 0), len(query_slice.query_states) - 1)
    return _build_tab(query_slice, index, today)


# ── Request -> state ────────────────────────────────────


def query_state_from_request(request: dict[str, Any]) -> QueryModeState:
    """Rebuild one tab from a plain query request."""
    metrics = [
        MetricSelection(field=field, label=generate_metric_label(i))
        for i, field in enumerate(request.get("measures", []))
    ]
    breakdowns = [BreakdownSelection(field=field) for field in request.get("dimensions", [])]
    for td in request.get("timeDimensions", []):
        breakdowns.append(
            BreakdownSelection(
                field=td["dimension"],
                is_time_dimension=True,
                granularity=td.get("granularity"),
                enable_comparison=bool(td.get("compareDateRange")),
            )
        )
    return QueryModeState(
        metrics=metrics,
        breakdowns=breakdowns,
        filters=coerce_filters(request.get("filters")),
        order=request.get("order") or None,
    )


def query_slice_from_request(request: dict[str, Any]) -> QueryModeSlice:
    """Rebuild the query slice from a single or multi-query request."""
    if "queries" in request:
        states = [query_state_from_request(q) for q in request["queries"]] or [QueryModeState()]
        return QueryModeSlice(
            query_states=states,
            merge_strategy=request.get("mergeStrategy", "concat"),
        )
    return QueryModeSlice(query_states=[query_state_from_request(request)])
