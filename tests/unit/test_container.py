"""
Unit tests -- StateContainer: mode isolation, query tabs, comparison,
chart auto-switching, subscribers, load/save and autosave.
"""
import pytest

from analysis_builder.adapters.registry import get_adapter, registered_modes
from analysis_builder.core.config import get_settings
from analysis_builder.persistence.storage import InMemoryStore
from analysis_builder.persistence.workspace import WORKSPACE_STORAGE_KEY, WorkspaceStore
from analysis_builder.query.types import FilterGroup, SimpleFilter
from analysis_builder.state.container import StateContainer


def _query_container() -> StateContainer:
    c = StateContainer()
    c.add_metric("Orders.count")
    c.add_breakdown("Orders.status")
    return c


def _funnel_container() -> StateContainer:
    c = StateContainer()
    c.set_analysis_type("funnel")
    c.set_funnel_cube("Events")
    c.set_funnel_binding_key("Events.userId")
    c.set_funnel_time_dimension("Events.timestamp")
    c.add_funnel_step()
    c.add_funnel_step()
    return c


# ── Defaults & mode switching ────────────────────────────

def test_initial_state():
    state = StateContainer().state
    assert state.analysis_type == "query"
    assert len(state.query.query_states) == 1
    assert list(state.charts) == ["query"]
    assert state.active_view == "chart"


def test_mode_switch_keeps_other_modes():
    c = _funnel_container()
    c.set_analysis_type("query")
    c.add_metric("Orders.count")
    c.set_analysis_type("funnel")
    assert c.state.funnel.funnel_cube == "Events"
    assert [s.name for s in c.state.funnel.funnel_steps] == ["Step 1", "Step 2"]
    c.set_analysis_type("query")
    assert c.state.query.active_state.metrics[0].field == "Orders.count"


def test_mode_switch_fills_chart_lazily():
    c = StateContainer()
    assert "flow" not in c.state.charts
    c.set_analysis_type("flow")
    assert c.state.charts["flow"].chart_type == "sankey"
    assert c.state.active_chart.chart_type == "sankey"


def test_mode_switch_resets_manual_chart_flag():
    c = StateContainer()
    c.set_chart_type_manual("pie")
    assert c.state.user_manually_selected_chart
    c.set_analysis_type("funnel")
    assert not c.state.user_manually_selected_chart


def test_unknown_mode_raises():
    with pytest.raises(KeyError):
        StateContainer().set_analysis_type("cohort")


def test_chart_and_view_are_per_mode():
    c = StateContainer()
    c.set_chart_type("pie")
    c.set_active_view("table")
    c.set_analysis_type("retention")
    assert c.state.active_view == "chart"
    assert c.state.active_chart.chart_type == "retentionCombined"
    c.set_analysis_type("query")
    assert c.state.active_view == "table"
    assert c.state.active_chart.chart_type == "pie"


def test_set_active_view_rejects_unknown():
    with pytest.raises(ValueError):
        StateContainer().set_active_view("grid")


def test_chart_and_display_config():
    c = StateContainer()
    c.set_chart_config({"stacked": True})
    c.set_display_config({"showLegend": False})
    assert c.state.active_chart.chart_config == {"stacked": True}
    assert c.state.active_chart.display_config == {"showLegend": False}


def test_clear_current_mode_only_touches_active_mode():
    c = _funnel_container()
    c.set_analysis_type("query")
    c.add_metric("Orders.count")
    c.set_analysis_type("funnel")
    c.clear_current_mode()
    assert c.state.funnel.funnel_steps == []
    assert c.state.funnel.funnel_cube == "Events"
    assert c.state.query.active_state.metrics[0].field == "Orders.count"


# ── Subscribers ──────────────────────────────────────────

def test_subscribers_see_committed_snapshot():
    c = StateContainer()
    seen = []

    def on_change(state):
        assert state is c.state
        seen.append(state)

    unsubscribe = c.subscribe(on_change)
    c.add_metric("Orders.count")
    assert len(seen) == 1
    assert seen[0].query.active_state.metrics[0].field == "Orders.count"

    unsubscribe()
    c.add_metric("Orders.totalAmount")
    assert len(seen) == 1


def test_failing_subscriber_does_not_block_others_or_autosave():
    store = InMemoryStore()
    c = StateContainer(store=WorkspaceStore(store))
    seen = []

    def broken(state):
        raise RuntimeError("listener bug")

    c.subscribe(broken)
    c.subscribe(seen.append)
    c.add_metric("Orders.count")
    assert len(seen) == 1
    assert WORKSPACE_STORAGE_KEY in store


def test_noop_mutation_does_not_notify():
    c = StateContainer()
    seen = []
    c.subscribe(seen.append)
    c.set_analysis_type("query")
    c.remove_query(0)  # only one tab left
    assert seen == []


def test_snapshots_are_immutable():
    c = _query_container()
    before = c.state
    c.add_metric("Orders.totalAmount")
    assert len(before.query.active_state.metrics) == 1
    assert len(c.state.query.active_state.metrics) == 2


# ── Query tabs ───────────────────────────────────────────

def test_add_query_seeds_from_active_tab():
    c = _query_container()
    c.add_query()
    query = c.state.query
    assert len(query.query_states) == 2
    assert query.active_query_index == 1
    assert [m.field for m in query.query_states[1].metrics] == ["Orders.count"]


def test_remove_query_adjusts_active_index():
    c = _query_container()
    c.add_query()
    c.add_query()
    c.set_active_query_index(2)
    c.remove_query(0)
    assert len(c.state.query.query_states) == 2
    assert c.state.query.active_query_index == 1


def test_remove_query_bad_index():
    with pytest.raises(IndexError):
        StateContainer().remove_query(3)


def test_set_active_query_index_bad_index():
    with pytest.raises(IndexError):
        StateContainer().set_active_query_index(1)


def test_merge_lock_routes_breakdowns_to_first_tab():
    c = _query_container()
    c.add_query()
    c.set_merge_strategy("merge")
    c.add_breakdown("Orders.country")

    states = c.state.query.query_states
    assert [b.field for b in states[0].breakdowns] == ["Orders.status", "Orders.country"]
    assert [b.field for b in states[1].breakdowns] == ["Orders.status"]

    request = c.build_request()
    assert request["mergeKeys"] == ["Orders.status", "Orders.country"]
    assert request["queries"][1]["dimensions"] == ["Orders.status", "Orders.country"]


def test_merge_lock_applies_to_removal():
    c = _query_container()
    c.add_query()
    c.set_merge_strategy("merge")
    first_tab_breakdown = c.state.query.query_states[0].breakdowns[0]
    c.remove_breakdown(first_tab_breakdown.id)
    assert c.state.query.query_states[0].breakdowns == []


def test_metrics_still_target_active_tab_in_merge_mode():
    c = _query_container()
    c.add_query()
    c.set_merge_strategy("merge")
    c.add_metric("Orders.totalAmount")
    assert len(c.state.query.query_states[0].metrics) == 1
    assert len(c.state.query.query_states[1].metrics) == 2


# ── Metrics & breakdowns ─────────────────────────────────

def test_metric_labels_follow_position():
    c = StateContainer()
    c.add_metric("Orders.count")
    c.add_metric("Orders.totalAmount")
    c.add_metric("Orders.averageAmount", label="AOV")
    assert [m.label for m in c.state.query.active_state.metrics] == ["A", "B", "AOV"]


def test_toggle_metric():
    c = StateContainer()
    c.toggle_metric("Orders.count")
    assert len(c.state.query.active_state.metrics) == 1
    c.toggle_metric("Orders.count")
    assert c.state.query.active_state.metrics == []


def test_remove_metric_drops_its_sort_order():
    c = StateContainer()
    c.add_metric("Orders.count")
    c.set_order("Orders.count", "desc")
    metric = c.state.query.active_state.metrics[0]
    c.remove_metric(metric.id)
    assert c.state.query.active_state.order is None


def test_reorder_metrics():
    c = StateContainer()
    c.add_metric("Orders.count")
    c.add_metric("Orders.totalAmount")
    c.reorder_metrics(1, 0)
    assert [m.field for m in c.state.query.active_state.metrics] == [
        "Orders.totalAmount",
        "Orders.count",
    ]
    with pytest.raises(IndexError):
        c.reorder_metrics(5, 0)


def test_only_one_time_breakdown_per_tab():
    c = StateContainer()
    c.add_breakdown("Orders.createdAt", is_time_dimension=True)
    c.add_breakdown("Events.timestamp", is_time_dimension=True)
    breakdowns = c.state.query.active_state.breakdowns
    assert len(breakdowns) == 1
    assert breakdowns[0].granularity == "month"


def test_toggle_breakdown_and_granularity():
    c = StateContainer()
    c.toggle_breakdown("Orders.createdAt", is_time_dimension=True, granularity="week")
    breakdown = c.state.query.active_state.breakdowns[0]
    c.set_breakdown_granularity(breakdown.id, "quarter")
    assert c.state.query.active_state.breakdowns[0].granularity == "quarter"
    c.toggle_breakdown("Orders.createdAt")
    assert c.state.query.active_state.breakdowns == []


def test_reorder_breakdowns():
    c = _query_container()
    c.add_breakdown("Orders.country")
    c.reorder_breakdowns(0, 1)
    assert [b.field for b in c.state.query.active_state.breakdowns] == [
        "Orders.country",
        "Orders.status",
    ]


# ── Comparison ───────────────────────────────────────────

def _time_container() -> StateContainer:
    c = StateContainer()
    c.add_metric("Orders.count")
    c.add_breakdown("Orders.createdAt", is_time_dimension=True)
    return c


def _date_filters(c: StateContainer) -> list:
    return [
        f for f in c.state.query.active_state.filters
        if isinstance(f, SimpleFilter) and f.member == "Orders.createdAt"
    ]


def test_enabling_comparison_adds_date_filter_and_line_chart():
    c = _time_container()
    breakdown = c.state.query.active_state.breakdowns[0]
    c.toggle_breakdown_comparison(breakdown.id)

    assert c.state.query.active_state.breakdowns[0].enable_comparison
    filters = _date_filters(c)
    assert len(filters) == 1
    assert filters[0].operator == "inDateRange"
    assert filters[0].date_range == f"last {get_settings().default_comparison_months} months"
    assert c.state.charts["query"].chart_type == "line"
    assert "compareDateRange" in c.build_request()["timeDimensions"][0]


def test_comparison_toggle_never_duplicates_date_filter():
    c = _time_container()
    breakdown_id = c.state.query.active_state.breakdowns[0].id
    c.toggle_breakdown_comparison(breakdown_id)
    c.toggle_breakdown_comparison(breakdown_id)
    assert not c.state.query.active_state.breakdowns[0].enable_comparison
    c.toggle_breakdown_comparison(breakdown_id)
    assert len(_date_filters(c)) == 1


def test_comparison_reuses_existing_date_filter():
    c = _time_container()
    c.set_filters(
        [{"member": "Orders.createdAt", "operator": "inDateRange", "dateRange": ["2023-03-01", "2023-03-10"]}]
    )
    c.toggle_breakdown_comparison(c.state.query.active_state.breakdowns[0].id)
    assert len(c.state.query.active_state.filters) == 1
    assert c.build_request()["timeDimensions"][0]["compareDateRange"] == [
        ["2023-03-01", "2023-03-10"],
        ["2023-02-19", "2023-02-28"],
    ]


def test_comparison_keeps_manual_chart():
    c = _time_container()
    c.set_chart_type_manual("bar")
    c.toggle_breakdown_comparison(c.state.query.active_state.breakdowns[0].id)
    assert c.state.charts["query"].chart_type == "bar"


def test_comparison_ignored_on_categorical_breakdown():
    c = _query_container()
    before = c.state
    c.toggle_breakdown_comparison(c.state.query.active_state.breakdowns[0].id)
    assert c.state is before


# ── Merge strategy & chart auto-switch ───────────────────

def test_funnel_merge_strategy_switches_chart():
    c = _query_container()
    c.set_merge_strategy("funnel")
    assert c.state.charts["query"].chart_type == "funnel"
    c.set_merge_strategy("concat")
    assert c.state.charts["query"].chart_type == "bar"


def test_merge_strategy_respects_manual_chart():
    c = _query_container()
    c.set_chart_type_manual("table")
    c.set_merge_strategy("funnel")
    assert c.state.charts["query"].chart_type == "table"


# ── Filters & order ──────────────────────────────────────

def test_drop_field_to_filter_groups_with_and():
    c = StateContainer()
    c.drop_field_to_filter("Orders.status")
    assert c.state.query.active_state.filters == [
        SimpleFilter(member="Orders.status", operator="set", values=[])
    ]
    c.drop_field_to_filter("Orders.country")
    c.drop_field_to_filter("Orders.category")
    filters = c.state.query.active_state.filters
    assert len(filters) == 1
    assert isinstance(filters[0], FilterGroup)
    assert filters[0].type == "and"
    assert [f.member for f in filters[0].filters] == [
        "Orders.status",
        "Orders.country",
        "Orders.category",
    ]


def test_drop_same_field_twice_is_noop():
    c = StateContainer()
    c.drop_field_to_filter("Orders.status")
    before = c.state
    c.drop_field_to_filter("Orders.status")
    assert c.state is before


def test_set_order():
    c = _query_container()
    c.set_order("Orders.count", "asc")
    c.set_order("Orders.status", "desc")
    assert c.state.query.active_state.order == {"Orders.count": "asc", "Orders.status": "desc"}
    c.set_order("Orders.count", None)
    assert c.state.query.active_state.order == {"Orders.status": "desc"}
    with pytest.raises(ValueError):
        c.set_order("Orders.count", "up")


# ── Funnel ───────────────────────────────────────────────

def test_funnel_request_once_two_steps_have_names():
    c = _funnel_container()
    assert c.validate().is_valid
    request = c.build_request()
    assert [s["name"] for s in request["funnel"]["steps"]] == ["Step 1", "Step 2"]


def test_add_funnel_step_copies_previous_step():
    c = _funnel_container()
    c.update_funnel_step(
        1,
        filters=[{"member": "Events.eventType", "operator": "equals", "values": ["buy"]}],
        time_to_convert="P3D",
    )
    c.add_funnel_step()
    step = c.state.funnel.funnel_steps[2]
    assert step.name == "Step 3"
    assert step.filters[0].values == ["buy"]
    assert step.time_to_convert == "P3D"
    assert c.state.funnel.active_funnel_step_index == 2


def test_set_funnel_cube_retargets_steps():
    c = _funnel_container()
    c.set_funnel_cube("Users")
    funnel = c.state.funnel
    assert {s.cube for s in funnel.funnel_steps} == {"Users"}
    assert funnel.funnel_binding_key is None
    assert funnel.funnel_time_dimension is None


def test_remove_funnel_step_keeps_last_one():
    c = _funnel_container()
    c.remove_funnel_step(0)
    c.remove_funnel_step(0)
    assert len(c.state.funnel.funnel_steps) == 1
    with pytest.raises(IndexError):
        c.remove_funnel_step(4)


def test_reorder_funnel_steps():
    c = _funnel_container()
    c.update_funnel_step(0, name="Signup")
    c.reorder_funnel_steps(0, 1)
    assert [s.name for s in c.state.funnel.funnel_steps] == ["Step 2", "Signup"]


# ── Flow ─────────────────────────────────────────────────

def test_flow_depth_is_clamped():
    c = StateContainer()
    c.set_steps_before(9)
    c.set_steps_after(-1)
    assert (c.state.flow.steps_before, c.state.flow.steps_after) == (5, 0)


def test_flow_setup_builds_request():
    c = StateContainer()
    c.set_analysis_type("flow")
    c.set_flow_cube("Events")
    c.set_flow_binding_key("Events.userId")
    c.set_flow_time_dimension("Events.timestamp")
    c.set_event_dimension("Events.eventType")
    c.set_starting_step_name("Checkout")
    c.add_starting_step_filter({"member": "Events.eventType", "operator": "equals", "values": ["checkout"]})
    assert c.validate().is_valid
    assert c.build_request()["flow"]["outputMode"] == "sankey"
    c.set_chart_type("sunburst")
    assert c.build_request()["flow"]["stepsBefore"] == 0


def test_set_flow_cube_resets_flow_fields():
    c = StateContainer()
    c.set_flow_binding_key("Events.userId")
    c.add_starting_step_filter({"member": "Events.eventType", "operator": "set"})
    c.set_flow_cube("Users")
    assert c.state.flow.flow_binding_key is None
    assert c.state.flow.starting_step.filters == []


def test_join_strategy():
    c = StateContainer()
    c.set_join_strategy("lateral")
    assert c.state.flow.join_strategy == "lateral"
    with pytest.raises(ValueError):
        c.set_join_strategy("hash")


# ── Retention ────────────────────────────────────────────

def test_retention_cube_change_keeps_date_range():
    c = StateContainer()
    c.set_retention_date_range("2024-01-01", "2024-03-31")
    c.set_retention_binding_key("Events.userId")
    c.add_retention_cohort_filter({"member": "Events.eventType", "operator": "equals", "values": ["signup"]})
    c.add_retention_breakdown("Events.platform")
    c.set_retention_cube("Users")
    retention = c.state.retention
    assert retention.retention_binding_key is None
    assert retention.retention_cohort_filters == []
    assert retention.retention_breakdowns == []
    assert (retention.retention_date_range.start, retention.retention_date_range.end) == (
        "2024-01-01",
        "2024-03-31",
    )


def test_retention_breakdowns_are_unique():
    c = StateContainer()
    c.add_retention_breakdown("Events.platform")
    c.add_retention_breakdown("Events.platform")
    assert len(c.state.retention.retention_breakdowns) == 1
    c.remove_retention_breakdown("Events.platform")
    assert c.state.retention.retention_breakdowns == []


def test_retention_filters_add_remove():
    c = StateContainer()
    c.add_retention_activity_filter({"member": "Events.eventType", "operator": "equals", "values": ["a"]})
    c.add_retention_activity_filter({"member": "Events.eventType", "operator": "equals", "values": ["b"]})
    c.remove_retention_activity_filter(0)
    assert [f.values for f in c.state.retention.retention_activity_filters] == [["b"]]
    with pytest.raises(IndexError):
        c.remove_retention_cohort_filter(0)


def test_retention_settings_validation():
    c = StateContainer()
    c.set_retention_view_granularity("month")
    c.set_retention_type("rolling")
    c.set_retention_periods(6)
    retention = c.state.retention
    assert (retention.retention_view_granularity, retention.retention_type, retention.retention_periods) == (
        "month",
        "rolling",
        6,
    )
    with pytest.raises(ValueError):
        c.set_retention_view_granularity("hour")
    with pytest.raises(ValueError):
        c.set_retention_type("sticky")


# ── Validation status ────────────────────────────────────

def test_validate_stamps_active_tab():
    c = StateContainer()
    result = c.validate()
    assert not result.is_valid
    tab = c.state.query.active_state
    assert tab.validation_status == "invalid"
    assert tab.validation_error

    c.add_metric("Orders.count")
    assert c.validate().is_valid
    assert c.state.query.active_state.validation_status == "valid"
    assert c.state.query.active_state.validation_error is None


# ── Save / load ──────────────────────────────────────────

def test_save_covers_active_mode_only():
    c = _funnel_container()
    config = c.save()
    assert config.analysis_type == "funnel"
    assert list(config.charts) == ["funnel"]


def test_load_switches_to_config_mode():
    config = _funnel_container().save().to_dict()
    c = StateContainer()
    assert c.load(config) is True
    assert c.state.analysis_type == "funnel"
    assert len(c.state.funnel.funnel_steps) == 2


def test_failed_load_leaves_state_untouched():
    c = _query_container()
    before = c.state
    assert c.load({"analysisType": "funnel"}) is False
    assert c.load("{broken") is False
    assert c.load({"version": 1, "analysisType": "flow"}) is False
    assert c.state is before


def test_workspace_round_trip():
    c = _funnel_container()
    c.set_analysis_type("query")
    c.add_metric("Orders.count")
    c.set_analysis_type("funnel")
    workspace = c.save_workspace()

    restored = StateContainer()
    assert restored.load_workspace(workspace.to_dict())
    assert restored.state.analysis_type == "funnel"
    for mode in registered_modes():
        adapter = get_adapter(mode)
        assert adapter.build_request(
            restored.state.mode_state(mode), restored.state.chart_for(mode)
        ) == adapter.build_request(c.state.mode_state(mode), c.state.chart_for(mode))


def test_unreadable_workspace_resets_to_defaults():
    c = _query_container()
    assert c.load_workspace("not json") is False
    assert c.state.analysis_type == "query"
    assert not c.state.query.active_state.has_content


def test_legacy_single_config_is_migrated():
    legacy = _funnel_container().save().to_dict()
    c = StateContainer()
    assert c.load_workspace(legacy) is True
    assert c.state.analysis_type == "funnel"
    assert len(c.state.funnel.funnel_steps) == 2
    assert c.state.query.active_state.metrics == []


# ── Autosave ─────────────────────────────────────────────

class _BrokenStore:
    def get(self, key):
        raise OSError("disk gone")

    def set(self, key, value):
        raise OSError("disk gone")

    def delete(self, key):
        raise OSError("disk gone")


def test_mutations_autosave_workspace():
    store = InMemoryStore()
    c = StateContainer(store=WorkspaceStore(store))
    c.add_metric("Orders.count")
    assert WORKSPACE_STORAGE_KEY in store

    restored = StateContainer.from_store(WorkspaceStore(store))
    assert restored.state.query.active_state.metrics[0].field == "Orders.count"


def test_storage_failures_are_swallowed():
    c = StateContainer.from_store(WorkspaceStore(_BrokenStore()))
    c.add_metric("Orders.count")
    assert c.state.query.active_state.metrics[0].field == "Orders.count"


def test_from_store_with_garbage_falls_back_to_defaults():
    store = InMemoryStore()
    store.set(WORKSPACE_STORAGE_KEY, "{{{")
    c = StateContainer.from_store(WorkspaceStore(store))
    assert c.state.analysis_type == "query"
    assert not c.state.query.active_state.has_content
