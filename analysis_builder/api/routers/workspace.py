"""GET / PUT / DELETE /workspace -- the persisted multi-mode workspace."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from analysis_builder.api.dependencies import get_store
from analysis_builder.core.logging import get_logger
from analysis_builder.persistence.storage import KeyValueStore
from analysis_builder.persistence.workspace import (
    WORKSPACE_STORAGE_KEY,
    WorkspaceStore,
    load_workspace,
    save_workspace,
)
from analysis_builder.state.snapshot import AnalysisState

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
def get_workspace(store: KeyValueStore = Depends(get_store)) -> dict[str, Any]:
    """Stored workspace, normalised; defaults when nothing (readable) is stored."""
    raw = WorkspaceStore(store).restore()
    state = load_workspace(raw) if raw is not None else None
    return save_workspace(state or AnalysisState()).to_dict()


@router.put("")
def put_workspace(
    workspace: dict[str, Any] = Body(...),
    store: KeyValueStore = Depends(get_store),
) -> dict[str, Any]:
    """Accept a workspace (or a legacy single config) and store its normalised form."""
    state = load_workspace(workspace)
    if state is None:
        raise HTTPException(status_code=422, detail="Body is neither a Workspace nor an AnalysisConfig")
    normalised = save_workspace(state)
    WorkspaceStore(store).persist(normalised)
    logger.info("Workspace stored  active=%s", normalised.active_type)
    return normalised.to_dict()


@router.delete("")
def delete_workspace(store: KeyValueStore = Depends(get_store)) -> dict[str, str]:
    WorkspaceStore(store).clear()
    return {"deleted": WORKSPACE_STORAGE_KEY}
