"""
Adapter registry: mode identifier -> adapter.

Adding a mode means writing one adapter module and listing it here.
"""
from __future__ import annotations

from analysis_builder.adapters.base import ModeAdapter
from analysis_builder.adapters.flow_adapter import FLOW_ADAPTER
from analysis_builder.adapters.funnel_adapter import FUNNEL_ADAPTER
from analysis_builder.adapters.query_adapter import QUERY_ADAPTER
from analysis_builder.adapters.retention_adapter import RETENTION_ADAPTER

_ADAPTERS: dict[str, ModeAdapter] = {
    a.type: a for a in (QUERY_ADAPTER, FUNNEL_ADAPTER, FLOW_ADAPTER, RETENTION_ADAPTER)
}


def get_adapter(mode: str) -> ModeAdapter:
    try:
        return _ADAPTERS[mode]
    except KeyError:
        raise KeyError(
            f"No adapter registered for mode '{mode}'. Registered: {', '.join(_ADAPTERS)}"
        ) from None


def has_adapter(mode: str) -> bool:
    return mode in _ADAPTERS


def all_adapters() -> list[ModeAdapter]:
    return list(_ADAPTERS.values())


def registered_modes() -> list[str]:
    return list(_ADAPTERS)
