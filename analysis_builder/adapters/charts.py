"""
Chart defaults and chart-type selection.

Each mode owns a default chart (query -> bar, funnel -> funnel,
flow -> sankey, retention -> retentionCombined).  ``pick_chart_type``
suggests a query-mode chart from the shape of the selection, the same way
a results panel would pick a sensible default visualisation.
"""
from __future__ import annotations

from typing import Any

from analysis_builder.query.types import ChartConfig, QueryModeState

# ── Chart types ─────────────────────────────────────────

CHART_BAR = "bar"
CHART_LINE = "line"
CHART_PIE = "pie"
CHART_KPI = "kpiNumber"  # single KPI card
CHART_TABLE = "table"
CHART_FUNNEL = "funnel"
CHART_SANKEY = "sankey"
CHART_SUNBURST = "sunburst"
CHART_RETENTION = "retentionCombined"

DEFAULT_DISPLAY_CONFIG: dict[str, Any] = {
    "showLegend": True,
    "showGrid": True,
    "showTooltip": True,
}


def default_chart(chart_type: str, **display: Any) -> ChartConfig:
    return ChartConfig(
        chart_type=chart_type,
        chart_config={},
        display_config={**DEFAULT_DISPLAY_CONFIG, **display},
    )


def with_chart_type(chart: ChartConfig, chart_type: str) -> ChartConfig:
    if chart.chart_type == chart_type:
        return chart
    return chart.model_copy(update={"chart_type": chart_type})


def pick_chart_type(state: QueryModeState) -> str:
    """Suggest a chart for a query tab.

    Rules (evaluated in order):
      1. Nothing broken down, one metric -> KPI card
      2. A time dimension present -> line
      3. Several dimensions -> table
      4. Otherwise -> bar
    """
    has_time = any(b.is_time_dimension for b in state.breakdowns)
    if not state.breakdowns:
        return CHART_KPI if len(state.metrics) == 1 else CHART_BAR
    if has_time:
        return CHART_LINE
    if len(state.breakdowns) > 2:
        return CHART_TABLE
    return CHART_BAR
