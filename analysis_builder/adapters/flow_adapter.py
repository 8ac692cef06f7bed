"""
Flow mode adapter.

The built request depends on the chart: a sunburst only shows paths
forward from the starting step.
"""
from __future__ import annotations

from typing import Any, Mapping

from analysis_builder.adapters.base import ModeAdapter, load_mode_state, loadable
from analysis_builder.adapters.charts import CHART_SANKEY, default_chart
from analysis_builder.adapters.validation import validate_flow
from analysis_builder.persistence.configs import CONFIG_VERSION, FlowAnalysisConfig
from analysis_builder.query.flow_builder import build_flow_query, flow_state_from_request
from analysis_builder.query.types import (
    FLOW_MAX_DEPTH,
    FLOW_MIN_DEPTH,
    ActiveView,
    ChartConfig,
    FlowModeState,
)

MODE = "flow"


def clamp_depth(value: int) -> int:
    return max(FLOW_MIN_DEPTH, min(FLOW_MAX_DEPTH, value))


def _default_chart() -> ChartConfig:
    return default_chart(CHART_SANKEY)


def _build_request(state: FlowModeState, chart: ChartConfig | None = None) -> dict[str, Any] | None:
    return build_flow_query(state, chart.chart_type if chart else None)


def _save(
    state: FlowModeState,
    charts: Mapping[str, ChartConfig],
    active_view: ActiveView = "chart",
) -> FlowAnalysisConfig:
    chart = charts.get(MODE) or _default_chart()
    return FlowAnalysisConfig(
        version=CONFIG_VERSION,
        **{name: getattr(state, name) for name in FlowModeState.model_fields},
        charts={MODE: chart},
        active_view=active_view,
        query=_build_request(state, chart),
    )


def _load(config: Any) -> FlowModeState:
    state: FlowModeState = load_mode_state(
        config, MODE, FlowModeState, flow_state_from_request, request_key="flow"
    )
    return state.model_copy(
        update={
            "steps_before": clamp_depth(state.steps_before),
            "steps_after": clamp_depth(state.steps_after),
        }
    )


def _clear(state: FlowModeState) -> FlowModeState:
    return FlowModeState(flow_cube=state.flow_cube)


FLOW_ADAPTER = ModeAdapter(
    type=MODE,
    state_cls=FlowModeState,
    create_initial=FlowModeState,
    extract_state=lambda full_state: full_state.flow,
    validate=validate_flow,
    build_request=_build_request,
    save=_save,
    can_load=loadable(_load),
    load=_load,
    clear=_clear,
    get_default_chart_config=_default_chart,
)
