"""
GET /measures, GET /dimensions, GET /catalog -- field metadata endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from analysis_builder.catalog.loader import load_catalog

router = APIRouter()


class FieldItem(BaseModel):
    name: str
    title: str
    cube: str
    type: str


@router.get("/measures")
def list_measures() -> dict:
    """Return measure names (lightweight)."""
    return {"measures": load_catalog().measure_names()}


@router.get("/dimensions", response_model=list[FieldItem])
def list_dimensions() -> list[FieldItem]:
    """Return dimensions with their cube and type (time dimensions flagged)."""
    catalog = load_catalog()
    return [
        FieldItem(name=d.name, title=d.title, cube=d.cube, type=d.kind)
        for c in catalog.cubes.values()
        for d in c.dimensions
    ]


@router.get("/catalog")
def full_catalog() -> dict:
    """Return the complete cube catalog for field pickers."""
    return load_catalog().to_dict()
