"""
Funnel Query Builder.

    {"funnel": {"bindingKey": ..., "timeDimension": ..., "steps": [...],
                "includeTimeMetrics": true}}

A step is sendable only when it has both a cube and a name; fewer than two
sendable steps (or a missing binding key / time dimension) yields None.
"""
from __future__ import annotations

from typing import Any

from analysis_builder.query.types import (
    BindingKey,
    Filter,
    FunnelModeState,
    FunnelStepState,
    coerce_filters,
    filters_to_dicts,
    time_dimension_from_request,
)

MIN_FUNNEL_STEPS = 2


def valid_funnel_steps(steps: list[FunnelStepState]) -> list[FunnelStepState]:
    return [s for s in steps if s.cube and s.name]


def _step_to_dict(step: FunnelStepState) -> dict[str, Any]:
    entry: dict[str, Any] = {"name": step.name, "cube": step.cube}
    if step.filters:
        entry["filter"] = filters_to_dicts(step.filters)
    if step.time_to_convert:
        entry["timeToConvert"] = step.time_to_convert
    return entry


def build_funnel_query(
    binding_key: BindingKey | None,
    time_dimension: str | None,
    steps: list[FunnelStepState],
) -> dict[str, Any] | None:
    if binding_key is None or not time_dimension:
        return None
    key = binding_key.to_request()
    if key is None:
        return None
    valid = valid_funnel_steps(steps)
    if len(valid) < MIN_FUNNEL_STEPS:
        return None
    return {
        "funnel": {
            "bindingKey": key,
            "timeDimension": time_dimension,
            "steps": [_step_to_dict(s) for s in valid],
            "includeTimeMetrics": True,
        }
    }


def build_funnel_request(state: FunnelModeState) -> dict[str, Any] | None:
    return build_funnel_query(
        state.funnel_binding_key,
        state.funnel_time_dimension,
        state.funnel_steps,
    )


# ── Request -> state ────────────────────────────────────


def _step_filters(raw: Any) -> list[Filter]:
    """Step filters arrive as a list or as a single filter or group."""
    if not raw:
        return []
    return coerce_filters(raw if isinstance(raw, list) else [raw])


def funnel_state_from_request(request: dict[str, Any]) -> FunnelModeState:
    """Rebuild funnel state from a ``{"funnel": {...}}`` request."""
    funnel = request.get("funnel") or {}
    steps = [
        FunnelStepState(
            name=raw.get("name", ""),
            cube=raw.get("cube", ""),
            filters=_step_filters(raw.get("filter")),
            time_to_convert=raw.get("timeToConvert"),
        )
        for raw in funnel.get("steps", [])
    ]
    return FunnelModeState(
        funnel_cube=steps[0].cube if steps and steps[0].cube else None,
        funnel_steps=steps,
        funnel_time_dimension=time_dimension_from_request(funnel.get("timeDimension")),
        funnel_binding_key=BindingKey.from_request(funnel.get("bindingKey")),
    )
