"""
AnalysisState -- the composed, immutable root snapshot.

One sub-state per mode plus the cross-cutting ``charts`` and
``active_views`` maps.  Switching ``analysis_type`` never touches another
mode's sub-state.
"""
from __future__ import annotations

from typing import Any

from pydantic import Field

from analysis_builder.adapters.query_adapter import QUERY_ADAPTER
from analysis_builder.adapters.registry import get_adapter
from analysis_builder.query.types import (
    ActiveView,
    AnalysisType,
    CamelModel,
    ChartConfig,
    FlowModeState,
    FunnelModeState,
    QueryModeSlice,
    RetentionModeState,
)
from analysis_builder.state.ai_state import AIState


def _initial_charts() -> dict[str, ChartConfig]:
    return {"query": QUERY_ADAPTER.get_default_chart_config()}


class AnalysisState(CamelModel):
    analysis_type: AnalysisType = "query"
    query: QueryModeSlice = Field(default_factory=QueryModeSlice)
    funnel: FunnelModeState = Field(default_factory=FunnelModeState)
    flow: FlowModeState = Field(default_factory=FlowModeState)
    retention: RetentionModeState = Field(default_factory=RetentionModeState)
    charts: dict[AnalysisType, ChartConfig] = Field(default_factory=_initial_charts)
    active_views: dict[AnalysisType, ActiveView] = Field(default_factory=lambda: {"query": "chart"})
    user_manually_selected_chart: bool = False
    ai: AIState = Field(default_factory=AIState)

    def mode_state(self, mode: str) -> Any:
        return get_adapter(mode).extract_state(self)

    def chart_for(self, mode: str) -> ChartConfig:
        return self.charts.get(mode) or get_adapter(mode).get_default_chart_config()

    @property
    def active_chart(self) -> ChartConfig:
        return self.chart_for(self.analysis_type)

    @property
    def active_view(self) -> ActiveView:
        return self.active_views.get(self.analysis_type, "chart")
