"""
Selection-state model for the analysis builder.

Every entity the user assembles (metrics, breakdowns, filters, funnel
steps, flow / retention settings) is a frozen pydantic model.  Mutations
never happen in place: the state container builds new instances with
``model_copy(update=...)`` so readers always see a complete snapshot.

Field names are snake_case in Python and camelCase on the wire
(``isTimeDimension``, ``funnelBindingKey`` ...).
"""
from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

from analysis_builder.core.utils import generate_id
from analysis_builder.query.date_ranges import DEFAULT_RETENTION_PRESET, date_range_from_preset

# ── Literals ────────────────────────────────────────────

AnalysisType = Literal["query", "funnel", "flow", "retention"]
ANALYSIS_TYPES: tuple[str, ...] = ("query", "funnel", "flow", "retention")

ActiveView = Literal["table", "chart"]
MergeStrategy = Literal["concat", "merge", "funnel"]
SortDirection = Literal["asc", "desc"]
ValidationStatus = Literal["idle", "validating", "valid", "invalid"]
JoinStrategy = Literal["auto", "lateral", "window"]
RetentionGranularity = Literal["day", "week", "month"]
RetentionType = Literal["classic", "rolling"]


class CamelModel(BaseModel):
    """Frozen model serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ── Filters ─────────────────────────────────────────────


class SimpleFilter(CamelModel):
    """``{member, operator, values, dateRange?}``."""

    member: str
    operator: str
    values: list[Any] = Field(default_factory=list)
    date_range: str | list[str] | None = None


class FilterGroup(CamelModel):
    """``{type: and|or, filters: [...]}`` -- nests recursively."""

    type: Literal["and", "or"]
    filters: list[Filter] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _from_server_shape(cls, data: Any) -> Any:
        # requests and older saves write groups as {and: [...]} / {or: [...]}
        if isinstance(data, dict) and "type" not in data:
            for kind in ("and", "or"):
                if isinstance(data.get(kind), list):
                    return {"type": kind, "filters": data[kind]}
        return data


Filter = Union[SimpleFilter, FilterGroup]
FilterGroup.model_rebuild()

FILTER_LIST = TypeAdapter(list[Filter])


def coerce_filters(filters: Any) -> list[Filter]:
    """Accept models or raw dicts (either group shape) and return typed filters."""
    if not filters:
        return []
    return FILTER_LIST.validate_python([f for f in filters if f])


def filters_to_dicts(filters: list[Filter]) -> list[dict[str, Any]]:
    return [f.to_dict() for f in filters]


# ── Query mode ──────────────────────────────────────────


class MetricSelection(CamelModel):
    id: str = Field(default_factory=generate_id)
    field: str
    label: str = ""


class BreakdownSelection(CamelModel):
    id: str = Field(default_factory=generate_id)
    field: str
    is_time_dimension: bool = False
    granularity: str | None = None
    enable_comparison: bool = False


class QueryModeState(CamelModel):
    """One query tab."""

    metrics: list[MetricSelection] = Field(default_factory=list)
    breakdowns: list[BreakdownSelection] = Field(default_factory=list)
    filters: list[Filter] = Field(default_factory=list)
    order: dict[str, SortDirection] | None = None
    # transient -- never persisted
    validation_status: ValidationStatus = Field("idle", exclude=True)
    validation_error: str | None = Field(None, exclude=True)

    @property
    def has_content(self) -> bool:
        return bool(self.metrics or self.breakdowns or self.filters)


class QueryModeSlice(CamelModel):
    """Query mode sub-state: ordered tabs plus merge policy."""

    query_states: list[QueryModeState] = Field(default_factory=lambda: [QueryModeState()])
    active_query_index: int = 0
    merge_strategy: MergeStrategy = "concat"

    @property
    def active_index(self) -> int:
        """``active_query_index`` clamped to the existing tabs."""
        return min(max(self.active_query_index, 0), max(len(self.query_states) - 1, 0))

    @property
    def active_state(self) -> QueryModeState:
        if not self.query_states:
            return QueryModeState()
        return self.query_states[self.active_index]


# ── Binding keys ────────────────────────────────────────


class BindingKeyMapping(CamelModel):
    cube: str
    dimension: str


class BindingKey(CamelModel):
    """Identifies "the same entity" across steps: one dimension or a per-cube mapping."""

    dimension: str | list[BindingKeyMapping]

    def to_request(self) -> str | list[dict[str, str]] | None:
        if isinstance(self.dimension, str):
            return self.dimension or None
        if not self.dimension:
            return None
        return [m.to_dict() for m in self.dimension]

    @classmethod
    def from_request(cls, value: Any) -> BindingKey | None:
        if not value:
            return None
        if isinstance(value, str):
            return cls(dimension=value)
        return cls(dimension=[BindingKeyMapping.model_validate(m) for m in value])

    @property
    def is_set(self) -> bool:
        return self.to_request() is not None


def time_dimension_from_request(value: Any) -> str | None:
    """``"Cube.dim"`` or ``[{cube, dimension}, ...]`` / ``{cube, dimension}`` -> ``"Cube.dim"``."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return f"{value['cube']}.{value['dimension']}"
    first = value[0]
    return f"{first['cube']}.{first['dimension']}"


# ── Funnel mode ─────────────────────────────────────────


class FunnelStepState(CamelModel):
    id: str = Field(default_factory=generate_id)
    name: str = ""
    cube: str = ""
    filters: list[Filter] = Field(default_factory=list)
    time_to_convert: str | None = None  # ISO-8601 duration, e.g. "P7D"


class FunnelModeState(CamelModel):
    funnel_cube: str | None = None
    funnel_steps: list[FunnelStepState] = Field(default_factory=list)
    active_funnel_step_index: int = 0
    funnel_time_dimension: str | None = None
    funnel_binding_key: BindingKey | None = None


# ── Flow mode ───────────────────────────────────────────

FLOW_MIN_DEPTH = 0
FLOW_MAX_DEPTH = 5


class FlowStartingStep(CamelModel):
    name: str = ""
    filters: list[Filter] = Field(default_factory=list)


class FlowModeState(CamelModel):
    flow_cube: str | None = None
    flow_binding_key: BindingKey | None = None
    flow_time_dimension: str | None = None
    starting_step: FlowStartingStep = Field(default_factory=FlowStartingStep)
    steps_before: int = 3
    steps_after: int = 3
    event_dimension: str | None = None
    join_strategy: JoinStrategy = "auto"


# ── Retention mode ──────────────────────────────────────

RETENTION_MIN_PERIODS = 1
RETENTION_MAX_PERIODS = 52


class DateRange(CamelModel):
    start: str = ""
    end: str = ""


def _default_retention_range() -> DateRange:
    start, end = date_range_from_preset(DEFAULT_RETENTION_PRESET)
    return DateRange(start=start, end=end)


class RetentionBreakdown(CamelModel):
    field: str
    label: str | None = None


class RetentionModeState(CamelModel):
    retention_cube: str | None = None
    retention_binding_key: BindingKey | None = None
    retention_time_dimension: str | None = None
    retention_date_range: DateRange = Field(default_factory=_default_retention_range)
    retention_cohort_filters: list[Filter] = Field(default_factory=list)
    retention_activity_filters: list[Filter] = Field(default_factory=list)
    retention_breakdowns: list[RetentionBreakdown] = Field(default_factory=list)
    retention_view_granularity: RetentionGranularity = "week"
    retention_periods: int = 12
    retention_type: RetentionType = "classic"


# ── Charts ──────────────────────────────────────────────


class ChartConfig(CamelModel):
    """Per-mode chart preference, kept in the ``charts`` map."""

    chart_type: str
    chart_config: dict[str, Any] = Field(default_factory=dict)
    display_config: dict[str, Any] = Field(default_factory=dict)
