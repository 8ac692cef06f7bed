"""
Mode adapter contract.

An adapter is a plain record of functions.  Each mode supplies one
instance; nothing inherits from anything.  The container only ever talks
to a mode through these entries:

    create_initial()                         -> fresh mode state
    extract_state(full_state)                -> this mode's sub-state
    validate(mode_state)                     -> ValidationResult
    build_request(mode_state, chart)         -> backend request or None
    save(mode_state, charts, active_view)    -> AnalysisConfig
    can_load(config)                         -> bool (never raises)
    load(config)                             -> mode state
    clear(mode_state)                        -> reset state (keeps the cube)
    get_default_chart_config()               -> ChartConfig
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from analysis_builder.adapters.validation import ValidationResult
from analysis_builder.core.logging import get_logger
from analysis_builder.persistence.configs import (
    AnalysisConfigBase,
    has_mode_body,
    mode_state_from_config,
    parse_analysis_config,
)
from analysis_builder.query.types import ActiveView, ChartConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModeAdapter:
    type: str
    state_cls: type
    create_initial: Callable[[], Any]
    extract_state: Callable[[Any], Any]
    validate: Callable[[Any], ValidationResult]
    build_request: Callable[[Any, ChartConfig | None], dict[str, Any] | None]
    save: Callable[[Any, Mapping[str, ChartConfig], ActiveView], AnalysisConfigBase]
    can_load: Callable[[Any], bool]
    load: Callable[[Any], Any]
    clear: Callable[[Any], Any]
    get_default_chart_config: Callable[[], ChartConfig]


# ── Load helpers shared by the adapters ─────────────────


def load_mode_state(
    config: Any,
    mode: str,
    state_cls: type,
    from_request: Callable[[dict[str, Any]], Any],
    request_key: str | None = None,
) -> Any:
    """Inline body first, then the stored request.  Raises ValueError when neither fits."""
    parsed = parse_analysis_config(config)
    if parsed is None:
        raise ValueError("Malformed AnalysisConfig")
    if parsed.analysis_type != mode:
        raise ValueError(f"Cannot load a '{parsed.analysis_type}' config in {mode} mode")
    if has_mode_body(parsed, state_cls):
        return mode_state_from_config(parsed, state_cls)
    request = parsed.query
    if not request or (request_key is not None and not isinstance(request.get(request_key), dict)):
        raise ValueError(f"AnalysisConfig carries no {mode} state")
    return from_request(request)


def loadable(load: Callable[[Any], Any]) -> Callable[[Any], bool]:
    """Wrap ``load`` into a ``can_load`` predicate that never raises."""

    def can_load(config: Any) -> bool:
        try:
            load(config)
        except (ValueError, KeyError, TypeError, IndexError) as exc:
            logger.debug("can_load rejected config: %s", exc)
            return False
        return True

    return can_load
