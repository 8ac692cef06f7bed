"""
Funnel mode adapter.
"""
from __future__ import annotations

from typing import Any, Mapping

from analysis_builder.adapters.base import ModeAdapter, load_mode_state, loadable
from analysis_builder.adapters.charts import CHART_FUNNEL, default_chart
from analysis_builder.adapters.validation import validate_funnel
from analysis_builder.persistence.configs import CONFIG_VERSION, FunnelAnalysisConfig
from analysis_builder.query.funnel_builder import build_funnel_request, funnel_state_from_request
from analysis_builder.query.types import ActiveView, ChartConfig, FunnelModeState

MODE = "funnel"


def _default_chart() -> ChartConfig:
    return default_chart(CHART_FUNNEL)


def _build_request(state: FunnelModeState, chart: ChartConfig | None = None) -> dict[str, Any] | None:
    return build_funnel_request(state)


def _save(
    state: FunnelModeState,
    charts: Mapping[str, ChartConfig],
    active_view: ActiveView = "chart",
) -> FunnelAnalysisConfig:
    return FunnelAnalysisConfig(
        version=CONFIG_VERSION,
        **{name: getattr(state, name) for name in FunnelModeState.model_fields},
        charts={MODE: charts.get(MODE) or _default_chart()},
        active_view=active_view,
        query=_build_request(state),
    )


def _load(config: Any) -> FunnelModeState:
    state: FunnelModeState = load_mode_state(
        config, MODE, FunnelModeState, funnel_state_from_request, request_key="funnel"
    )
    if state.funnel_steps:
        index = min(max(state.active_funnel_step_index, 0), len(state.funnel_steps) - 1)
    else:
        index = 0
    return state.model_copy(update={"active_funnel_step_index": index})


def _clear(state: FunnelModeState) -> FunnelModeState:
    """Drop steps and keys but keep the selected cube."""
    return FunnelModeState(funnel_cube=state.funnel_cube)


FUNNEL_ADAPTER = ModeAdapter(
    type=MODE,
    state_cls=FunnelModeState,
    create_initial=FunnelModeState,
    extract_state=lambda full_state: full_state.funnel,
    validate=validate_funnel,
    build_request=_build_request,
    save=_save,
    can_load=loadable(_load),
    load=_load,
    clear=_clear,
    get_default_chart_config=_default_chart,
)
