"""
Legacy formats -> AnalysisConfig.

Before versioned configs existed, dashboards stored a *portlet*:

    {"query": "<JSON text of a request>", "chartType": "bar",
     "chartConfig": {...}, "displayConfig": {...}, "analysisType": "funnel"?}

and share links carried the bare request object.  Funnels were once built
as a multi-query with ``mergeStrategy: "funnel"``; those are rebuilt as a
dedicated funnel request, one step per query.
"""
from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from analysis_builder.core.logging import get_logger
from analysis_builder.persistence.configs import (
    CONFIG_VERSION,
    AnalysisConfigBase,
    FunnelAnalysisConfig,
    QueryAnalysisConfig,
    parse_analysis_config,
)
from analysis_builder.query.types import CamelModel, ChartConfig, QueryModeState

logger = get_logger(__name__)

_REQUEST_KEYS = ("measures", "dimensions", "timeDimensions", "filters", "queries", "funnel")


class LegacyPortlet(CamelModel):
    query: str
    chart_type: str | None = None
    chart_config: dict[str, Any] | None = None
    display_config: dict[str, Any] | None = None
    analysis_type: str | None = None
    funnel_chart_type: str | None = None
    funnel_chart_config: dict[str, Any] | None = None
    funnel_display_config: dict[str, Any] | None = None

    def chart(self, mode: str) -> ChartConfig:
        if mode == "funnel":
            return ChartConfig(
                chart_type=self.funnel_chart_type or self.chart_type or "funnel",
                chart_config=self.funnel_chart_config or self.chart_config or {},
                display_config=self.funnel_display_config or self.display_config or {},
            )
        return ChartConfig(
            chart_type=self.chart_type or "bar",
            chart_config=self.chart_config or {},
            display_config=self.display_config or {},
        )


def _is_funnel_request(query: Any) -> bool:
    return isinstance(query, dict) and isinstance(query.get("funnel"), dict)


def _is_multi_query(query: Any) -> bool:
    return isinstance(query, dict) and isinstance(query.get("queries"), list)


def _is_legacy_funnel_merge(query: Any) -> bool:
    return _is_multi_query(query) and query.get("mergeStrategy") == "funnel"


def _cube_of(query: dict[str, Any]) -> str:
    """Cube name from the first member a request mentions (``Events.count`` -> ``Events``)."""
    members = [
        *(query.get("measures") or []),
        *(query.get("dimensions") or []),
        *(td.get("dimension", "") for td in query.get("timeDimensions") or []),
        *(f.get("member", "") for f in query.get("filters") or [] if isinstance(f, dict)),
    ]
    for member in members:
        if member and "." in member:
            return member.split(".", 1)[0]
    return ""


def _binding_key_request(raw: Any) -> str | list[dict[str, str]]:
    dimension = raw.get("dimension") if isinstance(raw, dict) else None
    if isinstance(dimension, str):
        return dimension
    if isinstance(dimension, list):
        return [{"cube": m["cube"], "dimension": m["dimension"]} for m in dimension]
    return ""


# ── Migrations ──────────────────────────────────────────


def migrate_legacy_funnel_merge(
    legacy_query: dict[str, Any],
    portlet: LegacyPortlet | None = None,
) -> FunnelAnalysisConfig:
    """``{queries, mergeStrategy: "funnel"}`` -> funnel config, one step per query."""
    queries: list[dict[str, Any]] = legacy_query.get("queries") or []
    labels = legacy_query.get("queryLabels") or []
    times = legacy_query.get("stepTimeToConvert") or []

    time_dimension = ""
    if queries and queries[0].get("timeDimensions"):
        time_dimension = queries[0]["timeDimensions"][0].get("dimension", "")

    steps: list[dict[str, Any]] = []
    for i, query in enumerate(queries):
        step: dict[str, Any] = {
            "name": (labels[i] if i < len(labels) else None) or f"Step {i + 1}",
            "cube": _cube_of(query),
        }
        filters = query.get("filters") or []
        if filters:
            step["filter"] = filters[0] if len(filters) == 1 else {"and": filters}
        if i < len(times) and times[i]:
            step["timeToConvert"] = times[i]
        steps.append(step)

    chart = portlet.chart("funnel") if portlet else ChartConfig(chart_type="funnel")
    return FunnelAnalysisConfig(
        version=CONFIG_VERSION,
        charts={"funnel": chart},
        query={
            "funnel": {
                "bindingKey": _binding_key_request(legacy_query.get("funnelBindingKey")),
                "timeDimension": time_dimension,
                "steps": steps,
                "includeTimeMetrics": True,
            }
        },
    )


def migrate_legacy_portlet(portlet: LegacyPortlet) -> AnalysisConfigBase | None:
    """Portlet -> AnalysisConfig.  None when its query text is not a JSON object."""
    try:
        query = json.loads(portlet.query)
    except json.JSONDecodeError:
        logger.warning("Legacy portlet query is not valid JSON")
        return None
    if not isinstance(query, dict):
        logger.warning("Legacy portlet query is not an object")
        return None

    if _is_funnel_request(query):
        return FunnelAnalysisConfig(
            version=CONFIG_VERSION, charts={"funnel": portlet.chart("funnel")}, query=query
        )
    if _is_legacy_funnel_merge(query):
        return migrate_legacy_funnel_merge(query, portlet)
    if portlet.analysis_type == "funnel":
        # flagged as a funnel but never converted: start from an empty funnel
        return FunnelAnalysisConfig(
            version=CONFIG_VERSION,
            charts={"funnel": portlet.chart("funnel")},
            query={"funnel": {"bindingKey": "", "timeDimension": "", "steps": []}},
        )

    charts = {"query": portlet.chart("query")}
    if _is_multi_query(query):
        multi = {
            "queries": query["queries"],
            "mergeStrategy": query.get("mergeStrategy") or "concat",
            "mergeKeys": query.get("mergeKeys"),
            "queryLabels": query.get("queryLabels"),
        }
        return QueryAnalysisConfig(
            version=CONFIG_VERSION,
            charts=charts,
            query={k: v for k, v in multi.items() if v is not None},
        )
    return QueryAnalysisConfig(version=CONFIG_VERSION, charts=charts, query=query)


def migrate_legacy(data: Any) -> AnalysisConfigBase | None:
    """Recognised legacy shapes (portlet, bare request) -> AnalysisConfig, else None."""
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            return None
    if not isinstance(data, dict) or "version" in data:
        return None
    if isinstance(data.get("query"), str):
        try:
            portlet = LegacyPortlet.model_validate(data)
        except ValidationError:
            return None
    elif "analysisType" not in data and any(key in data for key in _REQUEST_KEYS):
        portlet = LegacyPortlet(query=json.dumps(data))
    else:
        return None
    migrated = migrate_legacy_portlet(portlet)
    if migrated is not None:
        logger.info("Migrated legacy config  mode=%s", migrated.analysis_type)
    return migrated


def resolve_config(data: Any) -> AnalysisConfigBase | None:
    """Current AnalysisConfig first, then the legacy formats."""
    return parse_analysis_config(data) or migrate_legacy(data)


def migrate_config(data: Any) -> AnalysisConfigBase:
    """Like ``resolve_config`` but never fails: unknown data yields an empty query config."""
    resolved = resolve_config(data)
    if resolved is not None:
        return resolved
    logger.warning("Unknown config format, using defaults")
    return QueryAnalysisConfig(
        version=CONFIG_VERSION,
        charts={"query": ChartConfig(chart_type="bar")},
        query_states=[QueryModeState()],
    )


def has_analysis_config(portlet: Any) -> bool:
    """True when a stored portlet already carries a current ``analysisConfig``."""
    return (
        isinstance(portlet, dict)
        and parse_analysis_config(portlet.get("analysisConfig")) is not None
    )
