"""
FastAPI application entry-point.

Run with:  uvicorn analysis_builder.api.main:app --port 8000
"""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from analysis_builder.adapters.registry import registered_modes
from analysis_builder.api.routers import analysis, catalog, recent_fields, workspace

app = FastAPI(
    title="Analysis Builder",
    version="0.1.0",
    description="Query, funnel, flow and retention configuration engine",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analysis.router, prefix="/analysis", tags=["Analysis"])
app.include_router(workspace.router, prefix="/workspace", tags=["Workspace"])
app.include_router(recent_fields.router, prefix="/recent-fields", tags=["Recent fields"])
app.include_router(catalog.router, tags=["Catalog"])


@app.get("/health")
def health():
    return {"status": "ok", "modes": registered_modes()}
