"""
Defect lifecycle tests.

    open -> in_progress | fixed
    in_progress -> fixed
    fixed -> verified | in_progress
    verified -> (terminal)

Every step appends to the append-only DefectHistory; verifying the last
unresolved defect of a stage re-opens that stage for acceptance.
"""

from datetime import date, timedelta

import pytest

from sitetrack.core.exceptions import ImmutableRecordError, NotFoundError, ValidationError
from sitetrack.models import db
from sitetrack.models.defect import DEFECT_TRANSITIONS, DefectHistory, validate_defect_transition
from sitetrack.services import acceptance_service as svc
from sitetrack.services.defect_service import (
    create_defect,
    ensure_defect_for_rejection,
    list_defects,
    transition_defect,
)
from sitetrack.services.project_service import create_project

PAST = date.today() - timedelta(days=2)


@pytest.fixture()
def stage(project, make_item):
    phase = make_item("Facade")
    return svc.create_stage(project.id, {"work_item_id": phase.id})


@pytest.fixture()
def defect(project, stage):
    return create_defect(project.id, {
        "description": "Sealant gap at window W12",
        "location": "Level 3 east",
        "severity": "medium",
        "stage_id": stage.id,
    }, reporter_id=11)


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionTable:
    @pytest.mark.parametrize("old,new", [
        (old, new) for old, targets in DEFECT_TRANSITIONS.items() for new in targets
    ])
    def test_valid_edges(self, old, new):
        assert validate_defect_transition(old, new) is True

    @pytest.mark.parametrize("old,new", [
        ("open", "verified"),
        ("in_progress", "verified"),
        ("in_progress", "open"),
        ("verified", "open"),
        ("verified", "fixed"),
        ("open", "closed"),
    ])
    def test_invalid_edges(self, old, new):
        assert validate_defect_transition(old, new) is False


class TestTransitionDefect:
    def test_full_path_records_actors(self, defect):
        assert transition_defect(defect, "in_progress", user_id=5) == (True, "in_progress")
        assert transition_defect(defect, "fixed", user_id=5) == (True, "fixed")
        assert defect.fixed_by == 5
        assert defect.fixed_at is not None
        assert transition_defect(defect, "verified", user_id=6) == (True, "verified")
        assert defect.verified_by == 6
        assert defect.is_resolved is True

    def test_verification_requires_fixed(self, defect):
        assert transition_defect(defect, "verified", user_id=6) == (False, "invalid_state")
        assert defect.status == "open"

    def test_verified_is_terminal(self, defect):
        transition_defect(defect, "fixed", 5)
        transition_defect(defect, "verified", 6)
        assert transition_defect(defect, "in_progress", 5) == (False, "invalid_state")

    def test_rejected_fix_goes_back_to_in_progress(self, defect):
        transition_defect(defect, "fixed", 5)
        assert transition_defect(defect, "in_progress", 6, note="Still leaking") == (True, "in_progress")


# ═════════════════════════════════════════════════════════════════════════════
# History
# ═════════════════════════════════════════════════════════════════════════════


class TestHistory:
    def test_every_step_is_appended(self, defect):
        transition_defect(defect, "fixed", 5, note="Resealed")
        transition_defect(defect, "verified", 6)

        rows = defect.history.all()
        assert [r.action for r in rows] == ["created", "status_changed", "status_changed"]
        assert (rows[0].old_status, rows[0].new_status, rows[0].actor_id) == (None, "open", 11)
        assert (rows[1].old_status, rows[1].new_status, rows[1].note) == ("open", "fixed", "Resealed")
        assert (rows[2].old_status, rows[2].new_status) == ("fixed", "verified")

    def test_refused_transition_leaves_no_history(self, defect):
        transition_defect(defect, "verified", 6)
        assert defect.history.count() == 1

    def test_history_rows_cannot_be_updated(self, defect):
        entry = defect.history.first()
        entry.note = "rewritten"
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()

    def test_history_rows_cannot_be_deleted(self, defect):
        entry = DefectHistory.query.filter_by(defect_id=defect.id).first()
        db.session.delete(entry)
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()


# ═════════════════════════════════════════════════════════════════════════════
# Creation
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateDefect:
    def test_description_required(self, project):
        with pytest.raises(ValidationError):
            create_defect(project.id, {"description": "  "})

    def test_unknown_severity_refused(self, project):
        with pytest.raises(ValidationError):
            create_defect(project.id, {"description": "Scratch", "severity": "cosmetic"})

    def test_stage_of_another_project_is_not_found(self, project, stage):
        other = create_project({"code": "PRJ-009", "name": "Depot"})
        with pytest.raises(NotFoundError):
            create_defect(other.id, {"description": "Scratch", "stage_id": stage.id})

    def test_list_filters_by_status(self, project, defect):
        create_defect(project.id, {"description": "Loose handrail"})
        transition_defect(defect, "fixed", 5)

        assert [d.id for d in list_defects(project.id, status="fixed")] == [defect.id]
        assert len(list_defects(project.id)) == 2

    def test_ensure_is_idempotent_per_stage(self, stage):
        first = ensure_defect_for_rejection(stage, "Paint runs", actor_id=1)
        second = ensure_defect_for_rejection(stage, "Paint runs again", actor_id=1)

        assert first is not None
        assert second is None
        assert stage.defects.count() == 1


# ═════════════════════════════════════════════════════════════════════════════
# Re-opening acceptance after verification
# ═════════════════════════════════════════════════════════════════════════════


class TestResubmitAfterVerification:
    def test_rejected_stage_returns_to_pending(self, stage):
        svc.approve_supervisor(stage, 1)
        svc.reject_stage(stage, "Mortar stains on brickwork", 2)
        defect = stage.defects.one()

        transition_defect(defect, "fixed", 5)
        assert stage.status == "rejected"
        transition_defect(defect, "verified", 6)

        assert stage.status == "pending"
        assert stage.supervisor_approved_by is None
        assert stage.rejection_reason is None

    def test_stage_stays_rejected_while_another_defect_is_unresolved(self, project, stage):
        svc.reject_stage(stage, "Mortar stains on brickwork", 2)
        auto = stage.defects.one()
        create_defect(project.id, {"description": "Missing weep vents", "stage_id": stage.id})

        transition_defect(auto, "fixed", 5)
        transition_defect(auto, "verified", 6)

        assert stage.status == "rejected"

    def test_rejected_item_is_reopened(self, stage):
        item = svc.create_item(stage, {"name": "Brick bond", "end_date": PAST.isoformat()})
        svc.submit_item(item, 1)
        svc.workflow_reject_item(item, "Wrong bond pattern", 2)
        svc.reject_item(item, "Wrong bond pattern", 2)
        defect = stage.defects.one()

        transition_defect(defect, "fixed", 5)
        transition_defect(defect, "verified", 6)

        assert item.workflow_status == "draft"
        assert item.acceptance_status == "pending"
        assert item.rejection_reason is None
        assert svc.approve_item(item, 7) == (True, "approved")
