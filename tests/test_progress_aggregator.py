"""
Progress aggregation tests.

Covers the upward propagation of completion through the work breakdown:
    - leaf = latest daily log, parent = mean of direct children
    - status rule against today's date
    - completed only when every child is at 100
    - system-owned fields are never writable through the edit path
    - repeated recomputes are stable
    - auto acceptance stage when a phase completes
"""

from datetime import date, timedelta

import pytest

from sitetrack.core.exceptions import ValidationError
from sitetrack.models import db
from sitetrack.models.acceptance import AcceptanceStage
from sitetrack.models.work_item import WorkItem
from sitetrack.services.progress_aggregator import (
    DerivedProgress,
    NOT_STARTED,
    apply_derived,
    recalculate_all,
    recompute,
    status_for,
)
from sitetrack.services.work_item_service import build_tree, delete_work_item, update_work_item

TODAY = date.today()


# ═════════════════════════════════════════════════════════════════════════════
# Status rule
# ═════════════════════════════════════════════════════════════════════════════


class TestStatusRule:
    def test_hundred_is_completed_regardless_of_dates(self):
        assert status_for(100, None, None) == "completed"
        assert status_for(100, TODAY + timedelta(days=5), None) == "completed"

    def test_no_start_date_is_not_started(self):
        assert status_for(40, None, None) == "not_started"

    def test_future_start_is_not_started(self):
        assert status_for(0, TODAY + timedelta(days=1), TODAY + timedelta(days=9)) == "not_started"

    def test_inside_window_is_in_progress(self):
        assert status_for(10, TODAY - timedelta(days=1), TODAY + timedelta(days=1)) == "in_progress"

    def test_started_without_end_is_in_progress(self):
        assert status_for(10, TODAY - timedelta(days=1), None) == "in_progress"

    def test_end_date_is_inclusive(self):
        assert status_for(10, TODAY - timedelta(days=3), TODAY) == "in_progress"

    def test_past_end_is_delayed(self):
        assert status_for(99.5, TODAY - timedelta(days=9), TODAY - timedelta(days=1)) == "delayed"


# ═════════════════════════════════════════════════════════════════════════════
# Propagation
# ═════════════════════════════════════════════════════════════════════════════


class TestPropagation:
    def test_parent_is_mean_of_children(self, make_item, log):
        phase = make_item("Structure")
        slab = make_item("Slab", parent=phase)
        columns = make_item("Columns", parent=phase)

        log(slab, 60)
        log(columns, 80)

        assert slab.completion_percentage == 60
        assert columns.status == "in_progress"
        assert phase.completion_percentage == 70
        assert phase.status == "in_progress"

    def test_mean_propagates_through_three_levels(self, make_item, log):
        phase = make_item("Envelope")
        facade = make_item("Facade", parent=phase)
        roof = make_item("Roof", parent=phase)
        north = make_item("North face", parent=facade)
        south = make_item("South face", parent=facade)

        log(north, 80)
        log(south, 40)
        log(roof, 20)

        assert facade.completion_percentage == 60
        assert phase.completion_percentage == 40

    def test_latest_log_wins(self, make_item, log):
        phase = make_item("Finishes")
        log(phase, 30, TODAY - timedelta(days=2))
        log(phase, 55, TODAY - timedelta(days=1))

        assert phase.completion_percentage == 55

    def test_item_without_logs_reads_zero(self, make_item):
        phase = make_item("Landscaping")
        assert phase.completion_percentage == 0
        assert phase.status == "in_progress"

    def test_new_child_pulls_parent_mean_down(self, make_item, log):
        phase = make_item("MEP")
        duct = make_item("Ductwork", parent=phase)
        log(duct, 100)
        assert phase.completion_percentage == 100

        make_item("Plumbing", parent=phase)
        assert phase.completion_percentage == 50

    def test_parent_completed_only_when_all_children_are_complete(self, make_item, log):
        phase = make_item("Interiors")
        children = [make_item(f"Room {i}", parent=phase) for i in range(3)]
        log(children[0], 100)
        log(children[1], 100)
        log(children[2], 99.99)

        assert phase.completion_percentage == pytest.approx(100.0, abs=0.01)
        assert phase.status != "completed"

        log(children[2], 100)
        assert phase.status == "completed"

    def test_missing_item_yields_not_started(self):
        assert recompute(999_999) == NOT_STARTED

    def test_reparent_recomputes_both_parents(self, make_item, log):
        first = make_item("Block A")
        second = make_item("Block B")
        moving = make_item("Stairs", parent=first)
        make_item("Lift shaft", parent=first)
        log(moving, 100)
        assert first.completion_percentage == 50

        update_work_item(moving, {"parent_id": second.id})

        assert first.completion_percentage == 0
        assert second.completion_percentage == 100

    def test_delete_leaf_recomputes_parent(self, make_item, log):
        phase = make_item("Demolition")
        done = make_item("Strip out", parent=phase)
        pending = make_item("Haul away", parent=phase)
        log(done, 100)
        assert phase.completion_percentage == 50

        delete_work_item(pending)
        assert phase.completion_percentage == 100


# ═════════════════════════════════════════════════════════════════════════════
# System-owned fields / re-entrancy
# ═════════════════════════════════════════════════════════════════════════════


class TestSystemOwnedFields:
    @pytest.mark.parametrize("field,value", [
        ("completion_percentage", 80),
        ("status", "completed"),
    ])
    def test_edit_path_refuses_system_fields(self, make_item, field, value):
        item = make_item("Foundations")
        with pytest.raises(ValidationError):
            update_work_item(item, {field: value})
        assert item.completion_percentage == 0

    def test_apply_derived_only_accepts_aggregator_output(self, make_item):
        item = make_item("Foundations")
        with pytest.raises(TypeError):
            apply_derived(item, {"percentage": 50, "status": "in_progress"})

    def test_apply_derived_reports_no_change(self, make_item):
        item = make_item("Foundations")
        same = DerivedProgress(item.completion_percentage, item.status)
        assert apply_derived(item, same) is False

    def test_repeated_recompute_is_stable(self, make_item, log):
        phase = make_item("Substructure")
        child = make_item("Piling", parent=phase)
        log(child, 42.5)

        first = recompute(child.id)
        snapshot = (phase.completion_percentage, phase.status)
        second = recompute(child.id)

        assert first == second
        assert (phase.completion_percentage, phase.status) == snapshot


# ═════════════════════════════════════════════════════════════════════════════
# Tree shape
# ═════════════════════════════════════════════════════════════════════════════


class TestTreeShape:
    def test_self_parent_is_refused(self, make_item):
        item = make_item("Roofing")
        with pytest.raises(ValidationError):
            update_work_item(item, {"parent_id": item.id})

    def test_descendant_as_parent_is_refused(self, make_item):
        top = make_item("Tower")
        mid = make_item("Level 1", parent=top)
        leaf = make_item("Unit 101", parent=mid)
        with pytest.raises(ValidationError):
            update_work_item(top, {"parent_id": leaf.id})
        assert top.parent_id is None

    def test_item_with_children_cannot_be_deleted(self, make_item):
        top = make_item("Tower")
        make_item("Level 1", parent=top)
        with pytest.raises(ValidationError):
            delete_work_item(top)

    def test_end_before_start_is_refused(self, make_item):
        item = make_item("Paving")
        with pytest.raises(ValidationError):
            update_work_item(item, {"start_date": TODAY.isoformat(),
                                    "end_date": (TODAY - timedelta(days=1)).isoformat()})

    def test_build_tree_nests_children(self, make_item):
        top = make_item("Tower")
        mid = make_item("Level 1", parent=top)
        make_item("Unit 101", parent=mid)

        tree = build_tree(top.project_id)
        assert len(tree) == 1
        assert tree[0]["children"][0]["name"] == "Level 1"
        assert tree[0]["children"][0]["children"][0]["name"] == "Unit 101"


# ═════════════════════════════════════════════════════════════════════════════
# Full recalculation / phase completion
# ═════════════════════════════════════════════════════════════════════════════


class TestRecalculateAll:
    def test_rebuilds_values_from_logs(self, project, make_item, log):
        phase = make_item("Groundworks")
        child = make_item("Excavation", parent=phase)
        log(child, 60)

        # Simulate drift in stored values
        db.session.query(WorkItem).filter(WorkItem.id == phase.id).update(
            {"completion_percentage": 5.0}, synchronize_session=False,
        )
        db.session.expire_all()

        changed = recalculate_all(project.id)
        assert changed == 1
        assert db.session.get(WorkItem, phase.id).completion_percentage == 60

        assert recalculate_all(project.id) == 0


class TestPhaseCompletion:
    def test_completed_phase_gets_one_auto_stage(self, make_item, log):
        phase = make_item("Basement")
        child = make_item("Waterproofing", parent=phase)
        log(child, 100)

        stages = AcceptanceStage.query.filter_by(work_item_id=phase.id).all()
        assert len(stages) == 1
        assert stages[0].is_auto_created is True
        assert stages[0].status == "pending"

        recompute(child.id)
        assert AcceptanceStage.query.filter_by(work_item_id=phase.id).count() == 1

    def test_child_completion_does_not_create_stage(self, make_item, log):
        phase = make_item("Basement")
        child = make_item("Waterproofing", parent=phase)
        make_item("Drainage", parent=phase)
        log(child, 100)

        assert AcceptanceStage.query.count() == 0

    def test_auto_stage_can_be_switched_off(self, app, monkeypatch, make_item, log):
        monkeypatch.setitem(app.config, "AUTO_CREATE_ACCEPTANCE_STAGE", False)
        phase = make_item("Basement")
        log(phase, 100)

        assert phase.status == "completed"
        assert AcceptanceStage.query.count() == 0
