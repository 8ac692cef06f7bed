"""
Workspace persistence -- every mode's AnalysisConfig in one blob.

    {"version": 1, "activeType": "funnel",
     "modes": {"query": {...}, "funnel": {...}, "flow": {...}, "retention": {...}}}

Loading is forgiving: a mode whose config cannot be loaded keeps its
defaults, a legacy single ``AnalysisConfig`` stored under the workspace key
is migrated into its mode, and anything unreadable yields ``None`` so the
caller can fall back to fresh defaults.
"""
from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import Field, ValidationError

from analysis_builder.adapters.registry import all_adapters, get_adapter, has_adapter
from analysis_builder.core.logging import get_logger
from analysis_builder.persistence.configs import (
    FlowAnalysisConfig,
    FunnelAnalysisConfig,
    QueryAnalysisConfig,
    RetentionAnalysisConfig,
)
from analysis_builder.persistence.migration import resolve_config
from analysis_builder.persistence.storage import KeyValueStore
from analysis_builder.query.types import AnalysisType, CamelModel
from analysis_builder.state.snapshot import AnalysisState

logger = get_logger(__name__)

WORKSPACE_STORAGE_KEY = "analysis-builder-workspace"
WORKSPACE_VERSION = 1


class WorkspaceModes(CamelModel):
    query: QueryAnalysisConfig | None = None
    funnel: FunnelAnalysisConfig | None = None
    flow: FlowAnalysisConfig | None = None
    retention: RetentionAnalysisConfig | None = None


class Workspace(CamelModel):
    version: Literal[1] = WORKSPACE_VERSION
    active_type: AnalysisType = "query"
    modes: WorkspaceModes = Field(default_factory=WorkspaceModes)


class _WorkspaceEnvelope(CamelModel):
    """Outer shape only; each mode is checked by its adapter."""

    version: Literal[1]
    active_type: AnalysisType
    modes: dict[str, Any]


# ── Save ────────────────────────────────────────────────


def save_workspace(state: AnalysisState) -> Workspace:
    modes = {
        adapter.type: adapter.save(
            adapter.extract_state(state),
            state.charts,
            state.active_views.get(adapter.type, "chart"),
        )
        for adapter in all_adapters()
    }
    return Workspace(active_type=state.analysis_type, modes=WorkspaceModes(**modes))


def workspace_to_json(workspace: Workspace) -> str:
    return workspace.model_dump_json(by_alias=True, exclude_none=True)


# ── Load ────────────────────────────────────────────────


def apply_config(state: AnalysisState, config: Any) -> AnalysisState | None:
    """Load one AnalysisConfig into its mode of ``state``.  None when it cannot be loaded."""
    parsed = resolve_config(config)
    if parsed is None:
        return None
    adapter = get_adapter(parsed.analysis_type)
    if not adapter.can_load(parsed):
        return None
    mode = adapter.type
    charts = dict(state.charts)
    charts.update(parsed.charts)
    charts.setdefault(mode, adapter.get_default_chart_config())
    return state.model_copy(
        update={
            mode: adapter.load(parsed),
            "charts": charts,
            "active_views": {**state.active_views, mode: parsed.active_view},
        }
    )


def _decode(data: Any) -> Any:
    if isinstance(data, CamelModel):
        return data.to_dict()
    if isinstance(data, (str, bytes)):
        try:
            return json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Stored workspace is not valid JSON")
            return None
    return data


def load_workspace(data: Any) -> AnalysisState | None:
    """Rebuild a full state from a workspace (or a legacy single config)."""
    raw = _decode(data)
    if not isinstance(raw, dict):
        return None

    try:
        envelope = _WorkspaceEnvelope.model_validate(raw)
    except ValidationError:
        legacy = resolve_config(raw)
        if legacy is None:
            logger.warning("Workspace rejected: neither a workspace nor an AnalysisConfig")
            return None
        migrated = apply_config(AnalysisState(), legacy)
        if migrated is None:
            logger.warning("Legacy %s config could not be loaded", legacy.analysis_type)
            return None
        logger.info("Migrated legacy single-mode config  mode=%s", legacy.analysis_type)
        return migrated.model_copy(update={"analysis_type": legacy.analysis_type})

    state = AnalysisState()
    for mode, config in envelope.modes.items():
        if not has_adapter(mode):
            logger.warning("Skipping unknown workspace mode '%s'", mode)
            continue
        if not get_adapter(mode).can_load(config):
            logger.warning("Skipping unloadable %s config; mode keeps its defaults", mode)
            continue
        state = apply_config(state, config) or state

    active = envelope.active_type
    charts = dict(state.charts)
    charts.setdefault(active, get_adapter(active).get_default_chart_config())
    active_views = {**state.active_views}
    active_views.setdefault(active, "chart")
    return state.model_copy(
        update={"analysis_type": active, "charts": charts, "active_views": active_views}
    )


# ── Durable storage ─────────────────────────────────────


class WorkspaceStore:
    """Best-effort persistence: storage failures are logged and never raised."""

    def __init__(self, store: KeyValueStore, key: str = WORKSPACE_STORAGE_KEY) -> None:
        self._store = store
        self._key = key

    def persist(self, workspace: Workspace) -> None:
        try:
            self._store.set(self._key, workspace_to_json(workspace))
        except Exception:
            logger.exception("Workspace persist failed -- continuing without saving")

    def restore(self) -> str | None:
        try:
            return self._store.get(self._key)
        except Exception:
            logger.exception("Workspace restore failed -- starting from defaults")
            return None

    def clear(self) -> None:
        try:
            self._store.delete(self._key)
        except Exception:
            logger.exception("Workspace clear failed -- continuing")
