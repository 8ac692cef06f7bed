"""
AI query generation -- drives the container's generation state machine.

    begin -> plan -> complete | fail

Planner and provider failures never escape: they become the ``error``
state so the UI can show them and the user can cancel back to the
snapshot taken at ``begin``.
"""
from __future__ import annotations

from analysis_builder.ai.planner import PlanningError, plan
from analysis_builder.catalog.loader import Catalog
from analysis_builder.core.logging import get_logger
from analysis_builder.core.utils import timer
from analysis_builder.state.container import StateContainer

logger = get_logger(__name__)


def generate_query(
    container: StateContainer,
    prompt: str,
    provider: str | None = None,
    catalog: Catalog | None = None,
) -> bool:
    """Generate a selection for the active query tab.  Returns True on success."""
    container.begin_ai_generation(prompt)
    try:
        with timer() as t:
            generated = plan(prompt, provider=provider, catalog=catalog)
    except (PlanningError, RuntimeError, NotImplementedError) as exc:
        logger.warning("AI generation failed: %s", exc)
        container.fail_ai_generation(str(exc))
        return False

    if generated.is_empty:
        container.fail_ai_generation("The prompt did not match any fields")
        return False

    logger.info("AI generation planned in %d ms", t["elapsed_ms"])
    return container.complete_ai_generation(generated)
