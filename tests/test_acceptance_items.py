"""
Acceptance item tests: sign-off, role workflow and rejection defects.
"""

from datetime import date, timedelta

import pytest

from sitetrack.core.exceptions import ValidationError
from sitetrack.models.defect import Defect, DefectHistory
from sitetrack.models.work_item import DailyProgressLog
from sitetrack.services import acceptance_service as svc
from sitetrack.services.defect_service import create_defect, transition_defect

TODAY = date.today()
PAST = TODAY - timedelta(days=3)
FUTURE = TODAY + timedelta(days=3)


@pytest.fixture()
def phase(make_item):
    return make_item("Wet areas")


@pytest.fixture()
def stage(project, phase):
    return svc.create_stage(project.id, {"work_item_id": phase.id})


@pytest.fixture()
def tiling(make_item, phase):
    return make_item("Bathroom tiling", parent=phase)


def _item(stage, work_item=None, end=PAST, name="Tile grout check"):
    return svc.create_item(stage, {
        "name": name,
        "work_item_id": work_item.id if work_item is not None else None,
        "start_date": (end - timedelta(days=5)).isoformat(),
        "end_date": end.isoformat(),
    })


# ═════════════════════════════════════════════════════════════════════════════
# Sign-off readiness
# ═════════════════════════════════════════════════════════════════════════════


class TestReadiness:
    def test_finished_item_becomes_pending_on_save(self, stage):
        item = _item(stage, end=PAST)
        assert item.acceptance_status == "pending"
        assert item.can_accept is True

    def test_item_ending_today_is_pending(self, stage):
        assert _item(stage, end=TODAY).acceptance_status == "pending"

    def test_future_item_is_not_started(self, stage):
        item = _item(stage, end=FUTURE)
        assert item.acceptance_status == "not_started"
        assert item.can_accept is False
        assert svc.approve_item(item, user_id=1) == (False, "cannot_accept")
        assert item.acceptance_status == "not_started"

    def test_new_row_without_explicit_status_is_pending_after_flush(self, stage):
        from sitetrack.models import db
        from sitetrack.models.acceptance import AcceptanceItem

        item = AcceptanceItem(stage_id=stage.id, name="Sealant", end_date=PAST)
        db.session.add(item)
        db.session.flush()
        assert item.acceptance_status == "pending"
        assert item.can_accept is True

    def test_moving_end_date_into_past_makes_item_pending(self, stage):
        item = _item(stage, end=FUTURE)
        svc.update_item(item, {"start_date": (PAST - timedelta(days=1)).isoformat(),
                               "end_date": PAST.isoformat()})
        assert item.acceptance_status == "pending"


# ═════════════════════════════════════════════════════════════════════════════
# Sign-off
# ═════════════════════════════════════════════════════════════════════════════


class TestApproveItem:
    def test_approval_records_full_progress_for_work_item(self, project, stage, tiling):
        item = _item(stage, tiling)

        assert svc.approve_item(item, user_id=8, notes="All joints sealed") == (True, "approved")

        assert item.approved_by == 8
        assert item.approval_notes == "All joints sealed"
        log = DailyProgressLog.query.filter_by(work_item_id=tiling.id, log_date=TODAY).one()
        assert log.completion_percentage == 100
        assert tiling.completion_percentage == 100
        assert tiling.status == "completed"

    def test_last_item_approval_advances_pending_stage(self, stage):
        first = _item(stage, name="Grout")
        second = _item(stage, name="Silicone")

        svc.approve_item(first, 1)
        assert stage.status == "pending"

        svc.approve_item(second, 4)
        assert stage.status == "supervisor_approved"
        assert stage.completion_percentage == 100
        assert stage.supervisor_approved_by == 4

    def test_approved_item_is_locked(self, stage):
        item = _item(stage)
        svc.approve_item(item, 1)

        assert svc.approve_item(item, 1) == (False, "cannot_accept")
        with pytest.raises(ValidationError):
            svc.update_item(item, {"name": "Renamed"})
        with pytest.raises(ValidationError):
            svc.delete_item(item)

    def test_reset_clears_sign_off_while_pending(self, stage):
        item = _item(stage)
        assert svc.reset_acceptance(item) == (True, "pending")

        svc.approve_item(item, 1)
        assert svc.reset_acceptance(item) == (False, "invalid_state")
        assert item.acceptance_status == "approved"


# ═════════════════════════════════════════════════════════════════════════════
# Rejection → defect
# ═════════════════════════════════════════════════════════════════════════════


class TestRejectItem:
    def test_rejection_opens_linked_defect(self, stage, tiling):
        item = _item(stage, tiling)

        assert svc.reject_item(item, "cracked tile", user_id=4) == (True, "rejected")

        defect = Defect.query.one()
        assert defect.severity == "high"
        assert defect.status == "open"
        assert defect.stage_id == stage.id
        assert defect.acceptance_item_id == item.id
        assert defect.work_item_id == tiling.id
        assert defect.reported_by == 4
        history = DefectHistory.query.filter_by(defect_id=defect.id).all()
        assert len(history) == 1
        assert history[0].action == "created"

    def test_rejecting_again_while_defect_open_adds_nothing(self, stage, tiling):
        item = _item(stage, tiling)
        svc.reject_item(item, "cracked tile", user_id=4)

        assert svc.reject_item(item, "cracked tile", user_id=4) == (False, "cannot_accept")
        assert svc.workflow_reject_item(item, "cracked tile", user_id=4) == (True, "rejected")
        assert Defect.query.count() == 1

    def test_rejection_requires_reason(self, stage):
        item = _item(stage)
        with pytest.raises(ValidationError):
            svc.reject_item(item, "", user_id=4)
        assert item.acceptance_status == "pending"


# ═════════════════════════════════════════════════════════════════════════════
# Role workflow
# ═════════════════════════════════════════════════════════════════════════════


class TestItemWorkflow:
    def test_full_chain_approves_item(self, stage, tiling):
        item = _item(stage, tiling)

        assert svc.submit_item(item, 1) == (True, "submitted")
        assert svc.approve_item_step(item, "supervisor", 2) == (True, "supervisor_approved")
        assert svc.approve_item_step(item, "project_manager", 3) == (True, "project_manager_approved")
        assert svc.approve_item_step(item, "customer", 4) == (True, "customer_approved")

        assert item.acceptance_status == "approved"
        assert item.approved_by == 4
        assert tiling.completion_percentage == 100

    def test_steps_cannot_be_skipped(self, stage):
        item = _item(stage)
        assert svc.approve_item_step(item, "customer", 4) == (False, "invalid_state")
        assert svc.approve_item_step(item, "submit", 4) == (False, "not_supported")
        assert item.workflow_status == "draft"

    @pytest.mark.parametrize("defect_status,expected", [
        ("open", (False, "open_defects")),
        ("in_progress", (False, "open_defects")),
        ("fixed", (True, "project_manager_approved")),
    ])
    def test_open_defect_on_work_item_blocks_manager(self, project, stage, tiling, defect_status, expected):
        item = _item(stage, tiling)
        svc.submit_item(item, 1)
        svc.approve_item_step(item, "supervisor", 2)

        defect = create_defect(project.id, {"description": "Chipped tile", "work_item_id": tiling.id})
        if defect_status == "in_progress":
            transition_defect(defect, "in_progress", 5)
        elif defect_status == "fixed":
            transition_defect(defect, "fixed", 5)

        assert svc.approve_item_step(item, "project_manager", 3) == expected

    def test_workflow_rejection_raises_defect(self, stage, tiling):
        item = _item(stage, tiling)
        svc.submit_item(item, 1)

        assert svc.workflow_reject_item(item, "Grout colour wrong", 2) == (True, "rejected")

        defect = Defect.query.one()
        assert defect.acceptance_item_id == item.id
        assert "Grout colour wrong" in defect.description

    def test_customer_approved_item_cannot_be_rejected(self, stage):
        item = _item(stage)
        svc.submit_item(item, 1)
        for step in ("supervisor", "project_manager", "customer"):
            svc.approve_item_step(item, step, 1)
        assert svc.workflow_reject_item(item, "late", 2) == (False, "invalid_state")
