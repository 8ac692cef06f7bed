"""
AnalysisConfig -- the versioned, serialisable unit for one mode.

    {"version": 1, "analysisType": "funnel", "activeView": "chart",
     "charts": {"funnel": {...}}, <mode body>, "query": {<built request>}}

The mode body carries the selection state inline (``queryStates``,
``funnelSteps``, ``flowBindingKey`` ...).  ``query`` holds the executable
request built at save time; older share links carry only ``query``, which
adapters convert back into mode state.
"""
from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter, ValidationError

from analysis_builder.core.logging import get_logger
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

logger = get_logger(__name__)

CONFIG_VERSION = 1


class AnalysisConfigBase(CamelModel):
    version: Literal[1]
    charts: dict[AnalysisType, ChartConfig] = Field(default_factory=dict)
    active_view: ActiveView = "chart"
    query: dict[str, Any] | None = None


class QueryAnalysisConfig(QueryModeSlice, AnalysisConfigBase):
    analysis_type: Literal["query"] = "query"
    merge_keys: list[str] | None = None


class FunnelAnalysisConfig(FunnelModeState, AnalysisConfigBase):
    analysis_type: Literal["funnel"] = "funnel"


class FlowAnalysisConfig(FlowModeState, AnalysisConfigBase):
    analysis_type: Literal["flow"] = "flow"


class RetentionAnalysisConfig(RetentionModeState, AnalysisConfigBase):
    analysis_type: Literal["retention"] = "retention"


AnalysisConfig = Annotated[
    Union[
        QueryAnalysisConfig,
        FunnelAnalysisConfig,
        FlowAnalysisConfig,
        RetentionAnalysisConfig,
    ],
    Field(discriminator="analysis_type"),
]

ANALYSIS_CONFIG = TypeAdapter(AnalysisConfig)


def parse_analysis_config(data: Any) -> AnalysisConfigBase | None:
    """JSON text, dict or model -> typed config.  Anything malformed -> None."""
    if isinstance(data, AnalysisConfigBase):
        return data
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("AnalysisConfig is not valid JSON")
            return None
    if not isinstance(data, dict):
        return None
    try:
        return ANALYSIS_CONFIG.validate_python(data)
    except ValidationError as exc:
        logger.debug("AnalysisConfig rejected: %d error(s)", exc.error_count())
        return None


def has_mode_body(config: AnalysisConfigBase, state_cls: type[CamelModel]) -> bool:
    """True when any field of the mode state was present in the source data."""
    return bool(config.model_fields_set & set(state_cls.model_fields))


def mode_state_from_config(config: AnalysisConfigBase, state_cls: type[CamelModel]) -> Any:
    """Project the inline mode body of ``config`` onto ``state_cls``."""
    values = {name: getattr(config, name) for name in state_cls.model_fields}
    return state_cls(**values)


def serialize_config(config: AnalysisConfigBase) -> dict[str, Any]:
    return config.to_dict()


def config_to_json(config: AnalysisConfigBase) -> str:
    return config.model_dump_json(by_alias=True, exclude_none=True)
