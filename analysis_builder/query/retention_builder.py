"""
Retention Query Builder.

    {"retention": {"timeDimension", "bindingKey", "dateRange": {start, end},
                   "granularity", "periods", "retentionType",
                   "cohortFilters"?, "activityFilters"?, "breakdownDimensions"?}}
"""
from __future__ import annotations

from typing import Any

from analysis_builder.query.types import (
    BindingKey,
    DateRange,
    Filter,
    RetentionBreakdown,
    RetentionModeState,
    coerce_filters,
    filters_to_dicts,
    time_dimension_from_request,
)


def _collapse(filters: list[Filter]) -> dict[str, Any] | list[dict[str, Any]]:
    """A single filter is sent bare, several as a list."""
    dumped = filters_to_dicts(filters)
    return dumped[0] if len(dumped) == 1 else dumped


def build_retention_query(state: RetentionModeState) -> dict[str, Any] | None:
    key = state.retention_binding_key.to_request() if state.retention_binding_key else None
    if key is None or not state.retention_time_dimension:
        return None

    retention: dict[str, Any] = {
        "timeDimension": state.retention_time_dimension,
        "bindingKey": key,
        "dateRange": state.retention_date_range.to_dict(),
        "granularity": state.retention_view_granularity,
        "periods": state.retention_periods,
        "retentionType": state.retention_type,
    }
    if state.retention_cohort_filters:
        retention["cohortFilters"] = _collapse(state.retention_cohort_filters)
    if state.retention_activity_filters:
        retention["activityFilters"] = _collapse(state.retention_activity_filters)
    if state.retention_breakdowns:
        retention["breakdownDimensions"] = [b.field for b in state.retention_breakdowns]
    return {"retention": retention}


def _expand(raw: Any) -> list[Filter]:
    if not raw:
        return []
    if isinstance(raw, list):
        return coerce_filters(raw)
    return coerce_filters([raw])


def retention_state_from_request(request: dict[str, Any]) -> RetentionModeState:
    retention = request.get("retention") or {}
    time_dimension = time_dimension_from_request(retention.get("timeDimension"))
    cube = time_dimension.split(".")[0] if time_dimension else None

    values: dict[str, Any] = {
        "retention_cube": cube,
        "retention_binding_key": BindingKey.from_request(retention.get("bindingKey")),
        "retention_time_dimension": time_dimension,
        "retention_cohort_filters": _expand(retention.get("cohortFilters")),
        "retention_activity_filters": _expand(retention.get("activityFilters")),
        "retention_breakdowns": [
            RetentionBreakdown(field=f) for f in retention.get("breakdownDimensions", [])
        ],
        "retention_view_granularity": retention.get("granularity", "week"),
        "retention_periods": retention.get("periods", 12),
        "retention_type": retention.get("retentionType", "classic"),
    }
    if retention.get("dateRange"):
        values["retention_date_range"] = DateRange.model_validate(retention["dateRange"])
    return RetentionModeState(**values)
