"""
Loads, parses, and caches the cube catalog YAML into strongly-typed objects.

The catalog is the list of fields the builder can offer:
  - measures   (aggregations usable as metrics)
  - dimensions (breakdown / filter fields; ``type: time`` marks time dimensions)
  - flags used by funnel/flow/retention pickers (binding keys, event dimensions)
  - synonyms the keyword planner matches against
"""
from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from analysis_builder.core.config import get_settings


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class CatalogField:
    name: str           # "Cube.member"
    title: str
    kind: str           # measure | dimension | time
    synonyms: list[str] = field(default_factory=list)
    binding_key: bool = False
    event: bool = False

    @property
    def cube(self) -> str:
        return self.name.split(".")[0]

    @property
    def is_time(self) -> bool:
        return self.kind == "time"


@dataclass(frozen=True)
class Cube:
    name: str
    title: str
    measures: list[CatalogField] = field(default_factory=list)
    dimensions: list[CatalogField] = field(default_factory=list)


@dataclass
class Catalog:
    version: int
    cubes: dict[str, Cube]
    granularities: list[str]

    # ── Convenience look-ups ─────────────────────────

    def cube(self, name: str) -> Cube | None:
        return self.cubes.get(name)

    def all_fields(self) -> list[CatalogField]:
        fields: list[CatalogField] = []
        for c in self.cubes.values():
            fields.extend(c.measures)
            fields.extend(c.dimensions)
        return fields

    def get_field(self, name: str) -> CatalogField | None:
        return next((f for f in self.all_fields() if f.name == name), None)

    def measure_names(self) -> list[str]:
        return [m.name for c in self.cubes.values() for m in c.measures]

    def dimension_names(self) -> list[str]:
        return [d.name for c in self.cubes.values() for d in c.dimensions]

    def time_dimensions(self, cube: str | None = None) -> list[CatalogField]:
        return [
            d for c in self.cubes.values() for d in c.dimensions
            if d.is_time and (cube is None or c.name == cube)
        ]

    def to_dict(self) -> dict[str, Any]:
        """Catalog as plain dicts (for API responses)."""
        return {
            "version": self.version,
            "granularities": self.granularities,
            "cubes": [
                {
                    "name": c.name,
                    "title": c.title,
                    "measures": [{"name": m.name, "title": m.title} for m in c.measures],
                    "dimensions": [
                        {
                            "name": d.name,
                            "title": d.title,
                            "type": d.kind,
                            "bindingKey": d.binding_key,
                            "event": d.event,
                        }
                        for d in c.dimensions
                    ],
                }
                for c in self.cubes.values()
            ],
        }


# ── Parsing ──────────────────────────────────────────────

def _parse_field(raw: dict[str, Any], default_kind: str) -> CatalogField:
    kind = "time" if raw.get("type") == "time" else default_kind
    return CatalogField(
        name=raw["name"],
        title=raw.get("title", raw["name"]),
        kind=kind,
        synonyms=[s.lower() for s in raw.get("synonyms") or []],
        binding_key=raw.get("binding_key", False),
        event=raw.get("event", False),
    )


def _parse_cube(raw: dict[str, Any]) -> Cube:
    return Cube(
        name=raw["name"],
        title=raw.get("title", raw["name"]),
        measures=[_parse_field(m, "measure") for m in raw.get("measures", [])],
        dimensions=[_parse_field(d, "dimension") for d in raw.get("dimensions", [])],
    )


def parse_catalog(raw_yaml: dict[str, Any]) -> Catalog:
    cubes = {c["name"]: _parse_cube(c) for c in raw_yaml.get("cubes", [])}
    return Catalog(
        version=raw_yaml.get("version", 1),
        cubes=cubes,
        granularities=raw_yaml.get("granularities") or ["day", "week", "month", "quarter", "year"],
    )


# ── Public API ───────────────────────────────────────────

@lru_cache
def load_catalog(path: str | None = None) -> Catalog:
    """Load and cache the catalog from YAML."""
    catalog_path = Path(path or get_settings().catalog_path)
    with open(catalog_path) as f:
        raw = yaml.safe_load(f)
    return parse_catalog(raw)
