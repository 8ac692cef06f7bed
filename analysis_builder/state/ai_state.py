"""
AI-assisted generation state.

    idle --begin--> generating --complete--> success --accept--> idle
                               --fail-----> error
    any non-idle --cancel--> idle (restores the snapshot)

Entering ``generating`` snapshots the active query tab, its index and the
query chart.  The result and a cancel both target that tab, even when the
user has switched tabs meanwhile.  A result that arrives after a cancel is
discarded.
"""
from __future__ import annotations

from typing import Literal

from pydantic import Field

from analysis_builder.query.types import (
    BreakdownSelection,
    CamelModel,
    ChartConfig,
    Filter,
    MetricSelection,
)

AIStatus = Literal["idle", "generating", "success", "error"]


class AISnapshot(CamelModel):
    """The query tab (by index) and query chart as they were before generating."""

    query_index: int = 0
    metrics: list[MetricSelection] = Field(default_factory=list)
    breakdowns: list[BreakdownSelection] = Field(default_factory=list)
    filters: list[Filter] = Field(default_factory=list)
    chart: ChartConfig | None = None


class AIState(CamelModel):
    status: AIStatus = "idle"
    prompt: str = ""
    error: str | None = None
    previous: AISnapshot | None = None

    @property
    def is_generating(self) -> bool:
        return self.status == "generating"


# ── Generated selections ────────────────────────────────


class GeneratedBreakdown(CamelModel):
    field: str
    is_time_dimension: bool = False
    granularity: str | None = None


class GeneratedQuery(CamelModel):
    """What a planner hands back: field names only, ids and labels are assigned on apply."""

    metrics: list[str] = Field(default_factory=list)
    breakdowns: list[GeneratedBreakdown] = Field(default_factory=list)
    filters: list[Filter] = Field(default_factory=list)
    chart_type: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.metrics or self.breakdowns or self.filters)
