"""
Query mode adapter (single and multi-query tabs).
"""
from __future__ import annotations

from typing import Any, Mapping

from analysis_builder.adapters.base import ModeAdapter, load_mode_state, loadable
from analysis_builder.adapters.charts import CHART_BAR, default_chart
from analysis_builder.adapters.validation import validate_query
from analysis_builder.persistence.configs import CONFIG_VERSION, QueryAnalysisConfig
from analysis_builder.query.query_builder import (
    build_query_request,
    get_merge_keys,
    query_slice_from_request,
)
from analysis_builder.query.types import ActiveView, ChartConfig, QueryModeSlice, QueryModeState

MODE = "query"


def _create_initial() -> QueryModeSlice:
    return QueryModeSlice()


def _extract_state(full_state: Any) -> QueryModeSlice:
    return full_state.query


def _default_chart() -> ChartConfig:
    return default_chart(CHART_BAR)


def _build_request(state: QueryModeSlice, chart: ChartConfig | None = None) -> dict[str, Any] | None:
    return build_query_request(state) or None


def _save(
    state: QueryModeSlice,
    charts: Mapping[str, ChartConfig],
    active_view: ActiveView = "chart",
) -> QueryAnalysisConfig:
    return QueryAnalysisConfig(
        version=CONFIG_VERSION,
        query_states=state.query_states,
        active_query_index=state.active_query_index,
        merge_strategy=state.merge_strategy,
        merge_keys=get_merge_keys(state),
        charts={MODE: charts.get(MODE) or _default_chart()},
        active_view=active_view,
        query=_build_request(state),
    )


def _load(config: Any) -> QueryModeSlice:
    state: QueryModeSlice = load_mode_state(config, MODE, QueryModeSlice, query_slice_from_request)
    states = state.query_states or [QueryModeState()]
    index = min(max(state.active_query_index, 0), len(states) - 1)
    return state.model_copy(update={"query_states": states, "active_query_index": index})


def _clear(state: QueryModeSlice) -> QueryModeSlice:
    return QueryModeSlice()


QUERY_ADAPTER = ModeAdapter(
    type=MODE,
    state_cls=QueryModeSlice,
    create_initial=_create_initial,
    extract_state=_extract_state,
    validate=validate_query,
    build_request=_build_request,
    save=_save,
    can_load=loadable(_load),
    load=_load,
    clear=_clear,
    get_default_chart_config=_default_chart,
)
