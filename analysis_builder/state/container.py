"""
StateContainer -- the single mutable root of the analysis builder.

Every mutation is synchronous and replaces the whole ``AnalysisState``
snapshot.  When a ``WorkspaceStore`` is attached the full workspace is
persisted next (best-effort: storage failures are logged and swallowed).
Subscribers are notified last, so they never observe a half-applied
change; one that raises is logged and the others still run.

Mode rules
----------
* Switching ``analysis_type`` never clears another mode's sub-state.
* A mode's chart config is filled lazily from its adapter default.
* ``user_manually_selected_chart`` suppresses automatic chart switches
  until the mode changes again.
* In merge mode, breakdown edits made from tabs 2..N land on tab 1.
"""
from __future__ import annotations

from typing import Any, Callable

from analysis_builder.adapters.charts import (
    CHART_FUNNEL,
    CHART_LINE,
    pick_chart_type,
    with_chart_type,
)
from analysis_builder.adapters.flow_adapter import clamp_depth
from analysis_builder.adapters.registry import get_adapter
from analysis_builder.adapters.validation import ValidationResult
from analysis_builder.core.config import get_settings
from analysis_builder.core.logging import get_logger
from analysis_builder.core.utils import generate_metric_label
from analysis_builder.persistence.configs import AnalysisConfigBase
from analysis_builder.persistence.migration import resolve_config
from analysis_builder.persistence.workspace import (
    Workspace,
    WorkspaceStore,
    apply_config,
    load_workspace,
    save_workspace,
)
from analysis_builder.query.query_builder import DATE_RANGE_OPERATOR, find_date_filter
from analysis_builder.query.types import (
    ActiveView,
    BindingKey,
    BreakdownSelection,
    ChartConfig,
    DateRange,
    Filter,
    FilterGroup,
    FlowStartingStep,
    FunnelStepState,
    JoinStrategy,
    MergeStrategy,
    MetricSelection,
    QueryModeState,
    RetentionBreakdown,
    SimpleFilter,
    coerce_filters,
)
from analysis_builder.state.ai_state import AISnapshot, AIState, GeneratedQuery
from analysis_builder.state.snapshot import AnalysisState

logger = get_logger(__name__)

Subscriber = Callable[[AnalysisState], None]

DEFAULT_TIME_GRANULARITY = "month"


def _move(items: list, from_index: int, to_index: int) -> list:
    if not 0 <= from_index < len(items):
        raise IndexError(f"Cannot move item {from_index}: only {len(items)} item(s)")
    moved = list(items)
    item = moved.pop(from_index)
    moved.insert(max(0, min(to_index, len(moved))), item)
    return moved


def _drop_order(order: dict[str, str] | None, field: str | None) -> dict[str, str] | None:
    if not order or field is None or field not in order:
        return order
    remaining = {k: v for k, v in order.items() if k != field}
    return remaining or None


class StateContainer:
    def __init__(
        self,
        state: AnalysisState | None = None,
        store: WorkspaceStore | None = None,
    ) -> None:
        self._state = state or AnalysisState()
        self._store = store
        self._subscribers: list[Subscriber] = []

    @classmethod
    def from_store(cls, store: WorkspaceStore) -> StateContainer:
        """Restore the persisted workspace, falling back to defaults."""
        container = cls(store=store)
        raw = store.restore()
        if raw is not None:
            container.load_workspace(raw)
        return container

    # ── Snapshot & subscribers ──────────────────────────

    @property
    def state(self) -> AnalysisState:
        return self._state

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _commit(self, new_state: AnalysisState) -> None:
        if new_state is self._state:
            return
        self._state = new_state
        if self._store is not None:
            self._store.persist(save_workspace(new_state))
        for callback in list(self._subscribers):
            try:
                callback(new_state)
            except Exception:
                logger.exception("Subscriber %r failed -- notifying the rest", callback)

    def _update(self, **changes: Any) -> None:
        self._commit(self._state.model_copy(update=changes))

    # ── Core ────────────────────────────────────────────

    def set_analysis_type(self, mode: str) -> None:
        adapter = get_adapter(mode)
        state = self._state
        if state.analysis_type == mode:
            return
        charts = dict(state.charts)
        if mode not in charts:
            charts[mode] = adapter.get_default_chart_config()
        active_views = dict(state.active_views)
        active_views.setdefault(mode, "chart")
        self._update(
            analysis_type=mode,
            charts=charts,
            active_views=active_views,
            user_manually_selected_chart=False,
        )

    def _set_chart(self, chart: ChartConfig, mode: str | None = None, **changes: Any) -> None:
        mode = mode or self._state.analysis_type
        self._update(charts={**self._state.charts, mode: chart}, **changes)

    def set_chart_type(self, chart_type: str) -> None:
        """Programmatic chart change; leaves the manual-selection flag alone."""
        self._set_chart(with_chart_type(self._state.active_chart, chart_type))

    def set_chart_type_manual(self, chart_type: str) -> None:
        mode = self._state.analysis_type
        self._set_chart(
            with_chart_type(self._state.active_chart, chart_type),
            user_manually_selected_chart=True,
            active_views={**self._state.active_views, mode: "chart"},
        )

    def set_chart_config(self, chart_config: dict[str, Any]) -> None:
        chart = self._state.active_chart
        self._set_chart(chart.model_copy(update={"chart_config": dict(chart_config)}))

    def set_display_config(self, display_config: dict[str, Any]) -> None:
        chart = self._state.active_chart
        self._set_chart(chart.model_copy(update={"display_config": dict(display_config)}))

    def set_active_view(self, view: ActiveView) -> None:
        if view not in ("table", "chart"):
            raise ValueError(f"Unknown view '{view}'. Allowed: table, chart")
        self._update(active_views={**self._state.active_views, self._state.analysis_type: view})

    def clear_current_mode(self) -> None:
        mode = self._state.analysis_type
        adapter = get_adapter(mode)
        self._update(**{mode: adapter.clear(adapter.extract_state(self._state))})

    def validate(self) -> ValidationResult:
        """Validate the active mode.  Query mode also stamps the active tab's status."""
        mode = self._state.analysis_type
        adapter = get_adapter(mode)
        result = adapter.validate(adapter.extract_state(self._state))
        if mode == "query":
            status = "valid" if result.is_valid else "invalid"
            error = None if result.is_valid else "; ".join(result.errors)
            self._update_tab(
                self._state.query.active_query_index,
                lambda tab: tab.model_copy(
                    update={"validation_status": status, "validation_error": error}
                ),
            )
        return result

    def build_request(self) -> dict[str, Any] | None:
        mode = self._state.analysis_type
        adapter = get_adapter(mode)
        return adapter.build_request(adapter.extract_state(self._state), self._state.active_chart)

    def save(self) -> AnalysisConfigBase:
        """AnalysisConfig for the active mode only (share links, embedded views)."""
        mode = self._state.analysis_type
        adapter = get_adapter(mode)
        return adapter.save(adapter.extract_state(self._state), self._state.charts, self._state.active_view)

    def load(self, config: Any) -> bool:
        """Load one AnalysisConfig (or a legacy portlet) into its mode and make that mode active.

        Returns False (and leaves state untouched) when the config cannot be loaded.
        """
        parsed = resolve_config(config)
        if parsed is None:
            logger.warning("Ignoring malformed AnalysisConfig")
            return False
        loaded = apply_config(self._state, parsed)
        if loaded is None:
            logger.warning("Ignoring %s config: adapter cannot load it", parsed.analysis_type)
            return False
        self._commit(
            loaded.model_copy(
                update={"analysis_type": parsed.analysis_type, "user_manually_selected_chart": False}
            )
        )
        return True

    def save_workspace(self) -> Workspace:
        return save_workspace(self._state)

    def load_workspace(self, data: Any) -> bool:
        """Replace all modes from a workspace; unreadable data resets to defaults."""
        loaded = load_workspace(data)
        if loaded is None:
            logger.warning("Workspace could not be loaded -- falling back to defaults")
            self._commit(AnalysisState())
            return False
        self._commit(loaded)
        return True

    # ── Query mode: tabs ────────────────────────────────

    def _update_tab(self, index: int, updater: Callable[[QueryModeState], QueryModeState]) -> None:
        query = self._state.query
        states = list(query.query_states)
        updated = updater(states[index])
        if updated is states[index]:
            return
        states[index] = updated
        self._update(query=query.model_copy(update={"query_states": states}))

    def _active_tab_index(self) -> int:
        return self._state.query.active_query_index

    def _breakdown_tab_index(self) -> int:
        query = self._state.query
        if query.merge_strategy == "merge" and query.active_query_index > 0:
            return 0
        return query.active_query_index

    def add_query(self) -> None:
        """Append a tab seeded with the active tab's selections and activate it."""
        query = self._state.query
        current = query.active_state
        seeded = QueryModeState(
            metrics=list(current.metrics),
            breakdowns=list(current.breakdowns),
            filters=list(current.filters),
        )
        states = [*query.query_states, seeded]
        self._update(
            query=query.model_copy(
                update={"query_states": states, "active_query_index": len(states) - 1}
            )
        )

    def remove_query(self, index: int) -> None:
        query = self._state.query
        if not 0 <= index < len(query.query_states):
            raise IndexError(f"No query tab {index}")
        if len(query.query_states) <= 1:
            return
        states = [s for i, s in enumerate(query.query_states) if i != index]
        active = query.active_query_index
        if index == active:
            active = max(0, active - 1)
        elif index < active:
            active -= 1
        self._update(
            query=query.model_copy(update={"query_states": states, "active_query_index": active})
        )

    def set_active_query_index(self, index: int) -> None:
        query = self._state.query
        if not 0 <= index < len(query.query_states):
            raise IndexError(f"No query tab {index}")
        self._update(query=query.model_copy(update={"active_query_index": index}))

    def set_merge_strategy(self, strategy: MergeStrategy) -> None:
        """Switching into (or out of) the funnel strategy swaps funnel <-> bar charts."""
        state = self._state
        previous = state.query.merge_strategy
        if strategy == previous:
            return
        changes: dict[str, Any] = {
            "query": state.query.model_copy(update={"merge_strategy": strategy})
        }
        if not state.user_manually_selected_chart:
            chart = state.chart_for("query")
            if strategy == "funnel":
                chart = with_chart_type(chart, CHART_FUNNEL)
            elif previous == "funnel" and chart.chart_type == CHART_FUNNEL:
                chart = with_chart_type(chart, get_adapter("query").get_default_chart_config().chart_type)
            changes["charts"] = {**state.charts, "query": chart}
        self._update(**changes)

    # ── Query mode: metrics ─────────────────────────────

    def add_metric(self, field: str, label: str | None = None) -> None:
        def add(tab: QueryModeState) -> QueryModeState:
            metric = MetricSelection(field=field, label=label or generate_metric_label(len(tab.metrics)))
            return tab.model_copy(update={"metrics": [*tab.metrics, metric]})

        self._update_tab(self._active_tab_index(), add)

    def remove_metric(self, metric_id: str) -> None:
        def remove(tab: QueryModeState) -> QueryModeState:
            target = next((m for m in tab.metrics if m.id == metric_id), None)
            if target is None:
                return tab
            return tab.model_copy(
                update={
                    "metrics": [m for m in tab.metrics if m.id != metric_id],
                    "order": _drop_order(tab.order, target.field),
                }
            )

        self._update_tab(self._active_tab_index(), remove)

    def toggle_metric(self, field: str) -> None:
        tab = self._state.query.active_state
        existing = next((m for m in tab.metrics if m.field == field), None)
        if existing is not None:
            self.remove_metric(existing.id)
        else:
            self.add_metric(field)

    def reorder_metrics(self, from_index: int, to_index: int) -> None:
        self._update_tab(
            self._active_tab_index(),
            lambda tab: tab.model_copy(update={"metrics": _move(tab.metrics, from_index, to_index)}),
        )

    # ── Query mode: breakdowns ──────────────────────────

    def add_breakdown(
        self,
        field: str,
        is_time_dimension: bool = False,
        granularity: str | None = None,
    ) -> None:
        """Add a breakdown.  A second time dimension on the same tab is ignored."""

        def add(tab: QueryModeState) -> QueryModeState:
            if is_time_dimension and any(b.is_time_dimension for b in tab.breakdowns):
                return tab
            breakdown = BreakdownSelection(
                field=field,
                is_time_dimension=is_time_dimension,
                granularity=(granularity or DEFAULT_TIME_GRANULARITY) if is_time_dimension else None,
            )
            return tab.model_copy(update={"breakdowns": [*tab.breakdowns, breakdown]})

        self._update_tab(self._breakdown_tab_index(), add)

    def remove_breakdown(self, breakdown_id: str) -> None:
        def remove(tab: QueryModeState) -> QueryModeState:
            target = next((b for b in tab.breakdowns if b.id == breakdown_id), None)
            if target is None:
                return tab
            return tab.model_copy(
                update={
                    "breakdowns": [b for b in tab.breakdowns if b.id != breakdown_id],
                    "order": _drop_order(tab.order, target.field),
                }
            )

        self._update_tab(self._breakdown_tab_index(), remove)

    def toggle_breakdown(
        self,
        field: str,
        is_time_dimension: bool = False,
        granularity: str | None = None,
    ) -> None:
        tab = self._state.query.query_states[self._breakdown_tab_index()]
        existing = next((b for b in tab.breakdowns if b.field == field), None)
        if existing is not None:
            self.remove_breakdown(existing.id)
        else:
            self.add_breakdown(field, is_time_dimension, granularity)

    def set_breakdown_granularity(self, breakdown_id: str, granularity: str) -> None:
        self._update_tab(
            self._breakdown_tab_index(),
            lambda tab: tab.model_copy(
                update={
                    "breakdowns": [
                        b.model_copy(update={"granularity": granularity}) if b.id == breakdown_id else b
                        for b in tab.breakdowns
                    ]
                }
            ),
        )

    def toggle_breakdown_comparison(self, breakdown_id: str) -> None:
        """Toggle period-over-period comparison on a time breakdown.

        Enabling clears comparison on every other breakdown of the tab, adds a
        ``last N months`` date filter when the field has none, and switches the
        query chart to ``line`` unless the user picked a chart manually.
        """
        state = self._state
        index = self._breakdown_tab_index()
        tab = state.query.query_states[index]
        target = next((b for b in tab.breakdowns if b.id == breakdown_id), None)
        if target is None or not target.is_time_dimension:
            return

        enabling = not target.enable_comparison
        breakdowns = []
        for b in tab.breakdowns:
            if b.id == breakdown_id:
                breakdowns.append(b.model_copy(update={"enable_comparison": enabling}))
            elif b.enable_comparison:
                breakdowns.append(b.model_copy(update={"enable_comparison": False}))
            else:
                breakdowns.append(b)

        filters = list(tab.filters)
        if enabling and find_date_filter(target.field, filters) is None:
            months = get_settings().default_comparison_months
            filters.append(
                SimpleFilter(
                    member=target.field,
                    operator=DATE_RANGE_OPERATOR,
                    values=[],
                    date_range=f"last {months} months",
                )
            )

        states = list(state.query.query_states)
        states[index] = tab.model_copy(update={"breakdowns": breakdowns, "filters": filters})
        changes: dict[str, Any] = {"query": state.query.model_copy(update={"query_states": states})}

        if enabling and not state.user_manually_selected_chart:
            changes["charts"] = {
                **state.charts,
                "query": with_chart_type(state.chart_for("query"), CHART_LINE),
            }
            changes["active_views"] = {**state.active_views, "query": "chart"}
        self._update(**changes)

    def reorder_breakdowns(self, from_index: int, to_index: int) -> None:
        self._update_tab(
            self._breakdown_tab_index(),
            lambda tab: tab.model_copy(
                update={"breakdowns": _move(tab.breakdowns, from_index, to_index)}
            ),
        )

    # ── Query mode: filters & order ─────────────────────

    def set_filters(self, filters: list[Filter] | list[dict[str, Any]]) -> None:
        typed = coerce_filters(filters)
        self._update_tab(
            self._active_tab_index(),
            lambda tab: tab.model_copy(update={"filters": typed}),
        )

    def drop_field_to_filter(self, field: str) -> None:
        """Add an empty ``set`` filter for ``field``; existing filters are AND-ed with it."""

        def add(tab: QueryModeState) -> QueryModeState:
            if any(isinstance(f, SimpleFilter) and f.member == field for f in tab.filters):
                return tab
            new_filter = SimpleFilter(member=field, operator="set", values=[])
            if not tab.filters:
                filters: list[Filter] = [new_filter]
            elif len(tab.filters) == 1 and isinstance(tab.filters[0], FilterGroup):
                group = tab.filters[0]
                filters = [group.model_copy(update={"filters": [*group.filters, new_filter]})]
            else:
                filters = [FilterGroup(type="and", filters=[*tab.filters, new_filter])]
            return tab.model_copy(update={"filters": filters})

        self._update_tab(self._active_tab_index(), add)

    def set_order(self, field: str, direction: str | None) -> None:
        def set_direction(tab: QueryModeState) -> QueryModeState:
            order = dict(tab.order or {})
            if direction is None:
                order.pop(field, None)
            else:
                if direction not in ("asc", "desc"):
                    raise ValueError(f"Unknown sort direction '{direction}'")
                order[field] = direction
            return tab.model_copy(update={"order": order or None})

        self._update_tab(self._active_tab_index(), set_direction)

    # ── Funnel mode ─────────────────────────────────────

    def _update_funnel(self, **changes: Any) -> None:
        self._update(funnel=self._state.funnel.model_copy(update=changes))

    def set_funnel_cube(self, cube: str | None) -> None:
        """Changing cube re-targets every step and clears the cube-specific keys."""
        funnel = self._state.funnel
        self._update_funnel(
            funnel_cube=cube,
            funnel_binding_key=None,
            funnel_time_dimension=None,
            funnel_steps=[s.model_copy(update={"cube": cube or ""}) for s in funnel.funnel_steps],
        )

    def add_funnel_step(self) -> None:
        """New step named "Step N", copying the previous step's filters and window."""
        funnel = self._state.funnel
        last = funnel.funnel_steps[-1] if funnel.funnel_steps else None
        step = FunnelStepState(
            name=f"Step {len(funnel.funnel_steps) + 1}",
            cube=funnel.funnel_cube or "",
            filters=list(last.filters) if last else [],
            time_to_convert=last.time_to_convert if last else None,
        )
        self._update_funnel(
            funnel_steps=[*funnel.funnel_steps, step],
            active_funnel_step_index=len(funnel.funnel_steps),
        )

    def remove_funnel_step(self, index: int) -> None:
        funnel = self._state.funnel
        if not 0 <= index < len(funnel.funnel_steps):
            raise IndexError(f"No funnel step {index}")
        if len(funnel.funnel_steps) <= 1:
            return
        steps = [s for i, s in enumerate(funnel.funnel_steps) if i != index]
        self._update_funnel(
            funnel_steps=steps,
            active_funnel_step_index=min(funnel.active_funnel_step_index, len(steps) - 1),
        )

    def update_funnel_step(self, index: int, **updates: Any) -> None:
        funnel = self._state.funnel
        if not 0 <= index < len(funnel.funnel_steps):
            raise IndexError(f"No funnel step {index}")
        if "filters" in updates:
            updates["filters"] = coerce_filters(updates["filters"])
        steps = list(funnel.funnel_steps)
        steps[index] = FunnelStepState.model_validate({**steps[index].model_dump(), **updates})
        self._update_funnel(funnel_steps=steps)

    def set_active_funnel_step_index(self, index: int) -> None:
        if not 0 <= index < len(self._state.funnel.funnel_steps):
            raise IndexError(f"No funnel step {index}")
        self._update_funnel(active_funnel_step_index=index)

    def reorder_funnel_steps(self, from_index: int, to_index: int) -> None:
        self._update_funnel(funnel_steps=_move(self._state.funnel.funnel_steps, from_index, to_index))

    def set_funnel_time_dimension(self, dimension: str | None) -> None:
        self._update_funnel(funnel_time_dimension=dimension)

    def set_funnel_binding_key(self, binding_key: BindingKey | str | None) -> None:
        if isinstance(binding_key, str):
            binding_key = BindingKey(dimension=binding_key)
        self._update_funnel(funnel_binding_key=binding_key)

    # ── Flow mode ───────────────────────────────────────

    def _update_flow(self, **changes: Any) -> None:
        self._update(flow=self._state.flow.model_copy(update=changes))

    def set_flow_cube(self, cube: str | None) -> None:
        self._update_flow(
            flow_cube=cube,
            flow_binding_key=None,
            flow_time_dimension=None,
            event_dimension=None,
            starting_step=FlowStartingStep(),
        )

    def set_flow_binding_key(self, binding_key: BindingKey | str | None) -> None:
        if isinstance(binding_key, str):
            binding_key = BindingKey(dimension=binding_key)
        self._update_flow(flow_binding_key=binding_key)

    def set_flow_time_dimension(self, dimension: str | None) -> None:
        self._update_flow(flow_time_dimension=dimension)

    def set_event_dimension(self, dimension: str | None) -> None:
        self._update_flow(event_dimension=dimension)

    def set_starting_step_name(self, name: str) -> None:
        step = self._state.flow.starting_step
        self._update_flow(starting_step=step.model_copy(update={"name": name}))

    def set_starting_step_filters(self, filters: list[Filter] | list[dict[str, Any]]) -> None:
        step = self._state.flow.starting_step
        self._update_flow(starting_step=step.model_copy(update={"filters": coerce_filters(filters)}))

    def add_starting_step_filter(self, new_filter: Filter | dict[str, Any]) -> None:
        step = self._state.flow.starting_step
        self.set_starting_step_filters([*step.filters, *coerce_filters([new_filter])])

    def remove_starting_step_filter(self, index: int) -> None:
        step = self._state.flow.starting_step
        if not 0 <= index < len(step.filters):
            raise IndexError(f"No starting-step filter {index}")
        self.set_starting_step_filters([f for i, f in enumerate(step.filters) if i != index])

    def set_steps_before(self, count: int) -> None:
        self._update_flow(steps_before=clamp_depth(count))

    def set_steps_after(self, count: int) -> None:
        self._update_flow(steps_after=clamp_depth(count))

    def set_join_strategy(self, strategy: JoinStrategy) -> None:
        if strategy not in ("auto", "lateral", "window"):
            raise ValueError(f"Unknown join strategy '{strategy}'")
        self._update_flow(join_strategy=strategy)

    # ── Retention mode ──────────────────────────────────

    def _update_retention(self, **changes: Any) -> None:
        self._update(retention=self._state.retention.model_copy(update=changes))

    def set_retention_cube(self, cube: str | None) -> None:
        """Changing cube clears keys, filters and breakdowns; the date range stays."""
        self._update_retention(
            retention_cube=cube,
            retention_binding_key=None,
            retention_time_dimension=None,
            retention_cohort_filters=[],
            retention_activity_filters=[],
            retention_breakdowns=[],
        )

    def set_retention_binding_key(self, binding_key: BindingKey | str | None) -> None:
        if isinstance(binding_key, str):
            binding_key = BindingKey(dimension=binding_key)
        self._update_retention(retention_binding_key=binding_key)

    def set_retention_time_dimension(self, dimension: str | None) -> None:
        self._update_retention(retention_time_dimension=dimension)

    def set_retention_date_range(self, start: str, end: str) -> None:
        self._update_retention(retention_date_range=DateRange(start=start, end=end))

    def set_retention_cohort_filters(self, filters: list[Filter] | list[dict[str, Any]]) -> None:
        self._update_retention(retention_cohort_filters=coerce_filters(filters))

    def add_retention_cohort_filter(self, new_filter: Filter | dict[str, Any]) -> None:
        current = self._state.retention.retention_cohort_filters
        self.set_retention_cohort_filters([*current, *coerce_filters([new_filter])])

    def remove_retention_cohort_filter(self, index: int) -> None:
        current = self._state.retention.retention_cohort_filters
        if not 0 <= index < len(current):
            raise IndexError(f"No cohort filter {index}")
        self.set_retention_cohort_filters([f for i, f in enumerate(current) if i != index])

    def set_retention_activity_filters(self, filters: list[Filter] | list[dict[str, Any]]) -> None:
        self._update_retention(retention_activity_filters=coerce_filters(filters))

    def add_retention_activity_filter(self, new_filter: Filter | dict[str, Any]) -> None:
        current = self._state.retention.retention_activity_filters
        self.set_retention_activity_filters([*current, *coerce_filters([new_filter])])

    def remove_retention_activity_filter(self, index: int) -> None:
        current = self._state.retention.retention_activity_filters
        if not 0 <= index < len(current):
            raise IndexError(f"No activity filter {index}")
        self.set_retention_activity_filters([f for i, f in enumerate(current) if i != index])

    def add_retention_breakdown(self, field: str, label: str | None = None) -> None:
        current = self._state.retention.retention_breakdowns
        if any(b.field == field for b in current):
            return
        self._update_retention(retention_breakdowns=[*current, RetentionBreakdown(field=field, label=label)])

    def remove_retention_breakdown(self, field: str) -> None:
        current = self._state.retention.retention_breakdowns
        self._update_retention(retention_breakdowns=[b for b in current if b.field != field])

    def set_retention_view_granularity(self, granularity: str) -> None:
        if granularity not in ("day", "week", "month"):
            raise ValueError(f"Unknown retention granularity '{granularity}'")
        self._update_retention(retention_view_granularity=granularity)

    def set_retention_periods(self, periods: int) -> None:
        self._update_retention(retention_periods=periods)

    def set_retention_type(self, retention_type: str) -> None:
        if retention_type not in ("classic", "rolling"):
            raise ValueError(f"Unknown retention type '{retention_type}'")
        self._update_retention(retention_type=retention_type)

    # ── AI generation ───────────────────────────────────

    @staticmethod
    def _ai_tab_index(state: AnalysisState) -> int | None:
        previous = state.ai.previous
        index = previous.query_index if previous is not None else state.query.active_index
        if 0 <= index < len(state.query.query_states):
            return index
        logger.warning("AI generation tab %d no longer exists", index)
        return None

    def begin_ai_generation(self, prompt: str) -> None:
        """Snapshot the active tab and query chart, then enter ``generating``."""
        state = self._state
        if state.ai.is_generating:
            raise RuntimeError("An AI generation is already in progress")
        tab = state.query.active_state
        snapshot = AISnapshot(
            query_index=state.query.active_index,
            metrics=list(tab.metrics),
            breakdowns=list(tab.breakdowns),
            filters=list(tab.filters),
            chart=state.charts.get("query"),
        )
        self._update(ai=AIState(status="generating", prompt=prompt, previous=snapshot))

    def complete_ai_generation(self, generated: GeneratedQuery) -> bool:
        """Apply a generated selection to the tab generation started on.  Ignored unless generating."""
        state = self._state
        if not state.ai.is_generating:
            logger.info("Discarding AI result that arrived after cancel")
            return False
        index = self._ai_tab_index(state)
        if index is None:
            self.fail_ai_generation("The query tab for this prompt was removed")
            return False

        tab = QueryModeState(
            metrics=[
                MetricSelection(field=f, label=generate_metric_label(i))
                for i, f in enumerate(generated.metrics)
            ],
            breakdowns=[
                BreakdownSelection(
                    field=b.field,
                    is_time_dimension=b.is_time_dimension,
                    granularity=(b.granularity or DEFAULT_TIME_GRANULARITY) if b.is_time_dimension else None,
                )
                for b in generated.breakdowns
            ],
            filters=list(generated.filters),
        )
        states = list(state.query.query_states)
        states[index] = tab
        changes: dict[str, Any] = {
            "query": state.query.model_copy(update={"query_states": states}),
            "ai": state.ai.model_copy(update={"status": "success", "error": None}),
        }
        if not state.user_manually_selected_chart:
            chart_type = generated.chart_type or pick_chart_type(tab)
            changes["charts"] = {**state.charts, "query": with_chart_type(state.chart_for("query"), chart_type)}
        self._update(**changes)
        return True

    def fail_ai_generation(self, error: str) -> bool:
        if not self._state.ai.is_generating:
            return False
        self._update(ai=self._state.ai.model_copy(update={"status": "error", "error": error}))
        return True

    def accept_ai_generation(self) -> None:
        """Keep the generated selection and drop the snapshot."""
        if self._state.ai.status == "idle":
            return
        self._update(ai=AIState())

    def cancel_ai_generation(self) -> None:
        """Restore the pre-generation snapshot and return to ``idle``."""
        state = self._state
        previous = state.ai.previous
        if state.ai.status == "idle" and previous is None:
            return
        changes: dict[str, Any] = {"ai": AIState()}
        if previous is not None:
            index = self._ai_tab_index(state)
            if index is not None:
                states = list(state.query.query_states)
                states[index] = states[index].model_copy(
                    update={
                        "metrics": list(previous.metrics),
                        "breakdowns": list(previous.breakdowns),
                        "filters": list(previous.filters),
                    }
                )
                changes["query"] = state.query.model_copy(update={"query_states": states})
            charts = dict(state.charts)
            if previous.chart is not None:
                charts["query"] = previous.chart
            else:
                charts.pop("query", None)
            changes["charts"] = charts
        self._update(**changes)
