"""GET / POST /recent-fields -- most recently used metrics and breakdowns."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from analysis_builder.api.dependencies import get_store
from analysis_builder.persistence.recent_fields import RecentCategory, RecentFields
from analysis_builder.persistence.storage import KeyValueStore

router = APIRouter()


class RecentFieldRequest(BaseModel):
    field: str = Field(..., min_length=1, max_length=200)
    category: RecentCategory


class RecentFieldsResponse(BaseModel):
    metrics: list[str]
    breakdowns: list[str]


@router.get("", response_model=RecentFieldsResponse)
def list_recent_fields(store: KeyValueStore = Depends(get_store)):
    return RecentFieldsResponse(**RecentFields(store).get())


@router.post("", response_model=RecentFieldsResponse)
def add_recent_field(req: RecentFieldRequest, store: KeyValueStore = Depends(get_store)):
    return RecentFieldsResponse(**RecentFields(store).add(req.field, req.category))
