"""
Retention mode adapter.
"""
from __future__ import annotations

from typing import Any, Mapping

from analysis_builder.adapters.base import ModeAdapter, load_mode_state, loadable
from analysis_builder.adapters.charts import CHART_RETENTION, default_chart
from analysis_builder.adapters.validation import validate_retention
from analysis_builder.persistence.configs import CONFIG_VERSION, RetentionAnalysisConfig
from analysis_builder.query.retention_builder import (
    build_retention_query,
    retention_state_from_request,
)
from analysis_builder.query.types import ActiveView, ChartConfig, RetentionModeState

MODE = "retention"


def _default_chart() -> ChartConfig:
    return default_chart(CHART_RETENTION)


def _build_request(state: RetentionModeState, chart: ChartConfig | None = None) -> dict[str, Any] | None:
    return build_retention_query(state)


def _save(
    state: RetentionModeState,
    charts: Mapping[str, ChartConfig],
    active_view: ActiveView = "chart",
) -> RetentionAnalysisConfig:
    return RetentionAnalysisConfig(
        version=CONFIG_VERSION,
        **{name: getattr(state, name) for name in RetentionModeState.model_fields},
        charts={MODE: charts.get(MODE) or _default_chart()},
        active_view=active_view,
        query=_build_request(state),
    )


def _load(config: Any) -> RetentionModeState:
    return load_mode_state(
        config, MODE, RetentionModeState, retention_state_from_request, request_key="retention"
    )


def _clear(state: RetentionModeState) -> RetentionModeState:
    """Keep the cube and date range; everything else back to defaults."""
    return RetentionModeState(
        retention_cube=state.retention_cube,
        retention_date_range=state.retention_date_range,
    )


RETENTION_ADAPTER = ModeAdapter(
    type=MODE,
    state_cls=RetentionModeState,
    create_initial=RetentionModeState,
    extract_state=lambda full_state: full_state.retention,
    validate=validate_retention,
    build_request=_build_request,
    save=_save,
    can_load=loadable(_load),
    load=_load,
    clear=_clear,
    get_default_chart_config=_default_chart,
)
