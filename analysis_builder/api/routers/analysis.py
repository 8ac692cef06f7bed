"""POST /analysis/validate, /analysis/build, /analysis/generate -- single-config endpoints."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException
from pydantic import BaseModel, Field

from analysis_builder.adapters.base import ModeAdapter
from analysis_builder.adapters.registry import get_adapter
from analysis_builder.ai.generator import generate_query
from analysis_builder.core.logging import get_logger
from analysis_builder.persistence.configs import AnalysisConfigBase
from analysis_builder.persistence.migration import resolve_config
from analysis_builder.state.container import StateContainer

logger = get_logger(__name__)
router = APIRouter()


class ValidateResponse(BaseModel):
    analysis_type: str
    is_valid: bool
    errors: list[str]
    warnings: list[str]


class BuildResponse(BaseModel):
    analysis_type: str
    is_valid: bool
    errors: list[str]
    request: dict[str, Any] | None


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=3, max_length=500, description="Natural-language question")
    provider: str | None = Field(None, description="mock | openai | anthropic")


class GenerateResponse(BaseModel):
    prompt: str
    success: bool
    error: str | None
    config: dict[str, Any]
    request: dict[str, Any] | None


def _load(config: dict[str, Any]) -> tuple[ModeAdapter, Any, AnalysisConfigBase]:
    parsed = resolve_config(config)
    if parsed is None:
        raise HTTPException(status_code=422, detail="Body is not a valid AnalysisConfig")
    adapter = get_adapter(parsed.analysis_type)
    if not adapter.can_load(parsed):
        raise HTTPException(
            status_code=422, detail=f"AnalysisConfig cannot be loaded in {adapter.type} mode"
        )
    return adapter, adapter.load(parsed), parsed


@router.post("/validate", response_model=ValidateResponse)
def validate_endpoint(config: dict[str, Any] = Body(...)):
    """Run the mode's completeness rules against a saved config."""
    adapter, state, _ = _load(config)
    result = adapter.validate(state)
    return ValidateResponse(
        analysis_type=adapter.type,
        is_valid=result.is_valid,
        errors=result.errors,
        warnings=result.warnings,
    )


@router.post("/build", response_model=BuildResponse)
def build_endpoint(config: dict[str, Any] = Body(...)):
    """Build the backend request for a saved config (``request`` is null when incomplete)."""
    adapter, state, parsed = _load(config)
    try:
        result = adapter.validate(state)
        request = adapter.build_request(state, parsed.charts.get(adapter.type))
    except Exception as exc:
        logger.exception("Building %s request failed", adapter.type)
        raise HTTPException(status_code=500, detail=str(exc))
    return BuildResponse(
        analysis_type=adapter.type,
        is_valid=result.is_valid,
        errors=result.errors,
        request=request,
    )


@router.post("/generate", response_model=GenerateResponse)
def generate_endpoint(req: GenerateRequest):
    """Prompt -> query-mode selection, returned as an AnalysisConfig plus its request."""
    container = StateContainer()
    success = generate_query(container, req.prompt, provider=req.provider)
    if success:
        container.accept_ai_generation()
    return GenerateResponse(
        prompt=req.prompt,
        success=success,
        error=container.state.ai.error,
        config=container.save().to_dict(),
        request=container.build_request() if success else None,
    )
