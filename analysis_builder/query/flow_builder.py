"""
Flow Query Builder.

    {"flow": {"bindingKey", "timeDimension", "startingStep": {name, filter},
              "stepsBefore", "stepsAfter", "eventDimension", "outputMode",
              "joinStrategy"}}
"""
from __future__ import annotations

from typing import Any

from analysis_builder.query.types import (
    BindingKey,
    FlowModeState,
    FlowStartingStep,
    coerce_filters,
    filters_to_dicts,
    time_dimension_from_request,
)

SUNBURST_CHART = "sunburst"
DEFAULT_STARTING_STEP_NAME = "Starting Step"


def build_flow_query(state: FlowModeState, chart_type: str | None = None) -> dict[str, Any] | None:
    """None until binding key, time dimension, event dimension and a starting filter are set.

    A sunburst chart only renders paths forward from the start, so it forces
    ``outputMode="sunburst"`` and ``stepsBefore=0``.
    """
    key = state.flow_binding_key.to_request() if state.flow_binding_key else None
    if key is None or not state.flow_time_dimension or not state.event_dimension:
        return None
    if not state.starting_step.filters:
        return None

    filters = filters_to_dicts(state.starting_step.filters)
    sunburst = chart_type == SUNBURST_CHART
    return {
        "flow": {
            "bindingKey": key,
            "timeDimension": state.flow_time_dimension,
            "startingStep": {
                "name": state.starting_step.name or DEFAULT_STARTING_STEP_NAME,
                "filter": filters[0] if len(filters) == 1 else filters,
            },
            "stepsBefore": 0 if sunburst else state.steps_before,
            "stepsAfter": state.steps_after,
            "eventDimension": state.event_dimension,
            "outputMode": "sunburst" if sunburst else "sankey",
            "joinStrategy": state.join_strategy,
        }
    }


def flow_state_from_request(request: dict[str, Any]) -> FlowModeState:
    flow = request.get("flow") or {}
    binding_key = BindingKey.from_request(flow.get("bindingKey"))

    cube = None
    raw_key = flow.get("bindingKey")
    if isinstance(raw_key, str) and raw_key:
        cube = raw_key.split(".")[0]
    elif isinstance(raw_key, list) and raw_key:
        cube = raw_key[0].get("cube")

    starting = flow.get("startingStep") or {}
    raw_filter = starting.get("filter")
    if isinstance(raw_filter, list):
        filters = coerce_filters(raw_filter)
    elif raw_filter:
        filters = coerce_filters([raw_filter])
    else:
        filters = []

    return FlowModeState(
        flow_cube=cube,
        flow_binding_key=binding_key,
        flow_time_dimension=time_dimension_from_request(flow.get("timeDimension")),
        starting_step=FlowStartingStep(
            name=starting.get("name", ""),
            filters=filters,
        ),
        steps_before=flow.get("stepsBefore", 3),
        steps_after=flow.get("stepsAfter", 3),
        event_dimension=flow.get("eventDimension") or None,
        join_strategy=flow.get("joinStrategy") or "auto",
    )
