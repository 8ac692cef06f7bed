"""
Planner -- converts a natural-language prompt into a GeneratedQuery.

Two modes:
  mock               -> deterministic keyword matching against the catalog
                        (no API key needed, great for tests)
  openai / anthropic -> LLM-backed parsing via llm_client

Only fields that exist in the catalog survive; an LLM answer naming unknown
members is trimmed, and an answer that is not JSON raises ``PlanningError``.
"""
from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from analysis_builder.catalog.loader import Catalog, CatalogField, load_catalog
from analysis_builder.core.config import get_settings
from analysis_builder.core.logging import get_logger
from analysis_builder.query.types import FilterGroup, SimpleFilter
from analysis_builder.state.ai_state import GeneratedBreakdown, GeneratedQuery

logger = get_logger(__name__)


class PlanningError(ValueError):
    """The prompt could not be turned into a selection."""


# ── Keyword maps for mock mode ───────────────────────────

_GRAIN_KEYWORDS: dict[str, list[str]] = {
    "day":     ["daily", "by day", "per day", "each day"],
    "week":    ["weekly", "by week", "per week", "each week"],
    "month":   ["monthly", "by month", "per month", "each month"],
    "quarter": ["quarterly", "by quarter", "per quarter"],
    "year":    ["yearly", "annually", "by year", "per year"],
}

_TREND_KEYWORDS = ["over time", "trend", "by date", "timeline"]

_TIME_RANGE_PATTERNS: list[tuple[str, str]] = [
    # (regex pattern, normalised date range)
    (r"last\s+(\d+)\s+days?",   "last {n} days"),
    (r"last\s+(\d+)\s+weeks?",  "last {n} weeks"),
    (r"last\s+(\d+)\s+months?", "last {n} months"),
    (r"last\s+(\d+)\s+years?",  "last {n} years"),
    (r"this\s+week",            "this week"),
    (r"this\s+month",           "this month"),
    (r"this\s+quarter",         "this quarter"),
    (r"this\s+year",            "this year"),
    (r"last\s+week",            "last week"),
    (r"last\s+month",           "last month"),
    (r"last\s+quarter",         "last quarter"),
    (r"last\s+year",            "last year"),
    (r"yesterday",              "yesterday"),
    (r"today",                  "today"),
]


def _first_position(text: str, phrases: list[str]) -> int:
    """Earliest whole-word position of any phrase in *text*, or -1."""
    best = -1
    for phrase in phrases:
        m = re.search(rf"\b{re.escape(phrase)}\b", text)
        if m and (best == -1 or m.start() < best):
            best = m.start()
    return best


def _phrases(f: CatalogField) -> list[str]:
    return [*f.synonyms, f.title.lower()]


# ── Mock planner ─────────────────────────────────────────

def _plan_mock(prompt: str, catalog: Catalog) -> GeneratedQuery:
    """Deterministic keyword-based prompt -> selection parser."""
    q = prompt.lower().strip()

    # 1. Measures, ordered by where they are mentioned
    hits: list[tuple[int, CatalogField]] = []
    for c in catalog.cubes.values():
        for m in c.measures:
            pos = _first_position(q, _phrases(m))
            if pos != -1:
                hits.append((pos, m))
    hits.sort(key=lambda h: h[0])
    metrics = [m for _, m in hits]
    if not metrics:
        raise PlanningError(f"No known metric mentioned in: {prompt!r}")
    cube = metrics[0].cube

    # 2. Categorical breakdowns from the same cube
    breakdowns: list[GeneratedBreakdown] = []
    for d in catalog.cubes[cube].dimensions:
        if d.is_time or d.binding_key:
            continue
        if _first_position(q, _phrases(d)) != -1:
            breakdowns.append(GeneratedBreakdown(field=d.name))

    # 3. Time grain -> time breakdown on the cube's time dimension
    grain: str | None = None
    for g, keywords in _GRAIN_KEYWORDS.items():
        if _first_position(q, keywords) != -1:
            grain = g
            break
    if grain is None and _first_position(q, _TREND_KEYWORDS) != -1:
        grain = "month"

    time_dims = catalog.time_dimensions(cube)
    time_field = time_dims[0].name if time_dims else None
    if grain and time_field:
        breakdowns.append(GeneratedBreakdown(field=time_field, is_time_dimension=True, granularity=grain))

    # 4. Date range -> inDateRange filter on the time dimension
    filters: list[SimpleFilter | FilterGroup] = []
    if time_field:
        for pattern, template in _TIME_RANGE_PATTERNS:
            m = re.search(pattern, q)
            if m:
                date_range = template.replace("{n}", m.group(1)) if "{n}" in template else template
                filters.append(
                    SimpleFilter(member=time_field, operator="inDateRange", date_range=date_range)
                )
                break

    return GeneratedQuery(
        metrics=[m.name for m in metrics],
        breakdowns=breakdowns,
        filters=filters,
    )


# ── LLM planner ─────────────────────────────────────────

_LLM_SYSTEM_PROMPT = """\
You are an analytics query planner. Given a business question, return a JSON \
object with these exact fields:

  metrics     : list[string] -- one or more of: {measures}
  breakdowns  : list[object] -- {{"field": string, "isTimeDimension": bool, "granularity": string | null}}
                with field one of: {dimensions}
                time dimensions ({time_dimensions}) need a granularity: {granularities}
  filters     : list[object] -- {{"member": string, "operator": string, "values": list, "dateRange"?: string}}
  chartType   : string | null -- bar, line, pie, table or kpiNumber

Respond ONLY with valid JSON. No markdown, no explanation."""


def _build_llm_system(catalog: Catalog) -> str:
    return _LLM_SYSTEM_PROMPT.format(
        measures=", ".join(catalog.measure_names()),
        dimensions=", ".join(catalog.dimension_names()),
        time_dimensions=", ".join(d.name for d in catalog.time_dimensions()),
        granularities=", ".join(catalog.granularities),
    )


def _parse_llm_response(text: str, catalog: Catalog) -> GeneratedQuery:
    """Parse the LLM's JSON response, dropping members the catalog does not know."""
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)

    try:
        data: dict[str, Any] = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PlanningError(f"LLM returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise PlanningError("LLM response is not a JSON object")

    try:
        generated = GeneratedQuery.model_validate(data)
    except ValidationError as exc:
        raise PlanningError(f"LLM response has the wrong shape: {exc.error_count()} error(s)") from exc

    known_measures = set(catalog.measure_names())
    known_dimensions = set(catalog.dimension_names())
    dropped = [m for m in generated.metrics if m not in known_measures]
    dropped += [b.field for b in generated.breakdowns if b.field not in known_dimensions]
    if dropped:
        logger.warning("Dropping unknown members from LLM plan: %s", ", ".join(dropped))

    return generated.model_copy(
        update={
            "metrics": [m for m in generated.metrics if m in known_measures],
            "breakdowns": [b for b in generated.breakdowns if b.field in known_dimensions],
        }
    )


def _plan_llm(prompt: str, catalog: Catalog, provider: str) -> GeneratedQuery:
    from analysis_builder.ai.llm_client import call_llm

    response = call_llm(f"Question: {prompt}\n\nJSON:", provider=provider, system=_build_llm_system(catalog))
    return _parse_llm_response(response, catalog)


# ── Public API ───────────────────────────────────────────

def plan(prompt: str, provider: str | None = None, catalog: Catalog | None = None) -> GeneratedQuery:
    """Parse *prompt* into a GeneratedQuery.

    Providers
    ---------
    mock               -- keyword matching (no API key needed)
    openai / anthropic -- LLM-backed parsing via llm_client
    """
    catalog = catalog or load_catalog()
    provider = (provider or get_settings().llm_provider).lower()

    if provider == "mock":
        generated = _plan_mock(prompt, catalog)
    else:
        generated = _plan_llm(prompt, catalog, provider)

    logger.info("Planner[%s] -> %s", provider, generated.model_dump_json(by_alias=True, exclude_none=True))
    return generated
