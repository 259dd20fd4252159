"""
Project progress reconciliation tests.

Signal precedence under "auto": acceptance > logs > subcontractors > manual,
then 0% from logs when nothing is recorded.
"""

from datetime import date, timedelta

import pytest

from sitetrack.core.exceptions import ConflictError, ValidationError
from sitetrack.models import db
from sitetrack.models.project import Project
from sitetrack.services import acceptance_service as svc
from sitetrack.services.project_progress_service import (
    from_acceptance,
    get_or_create_progress,
    recalculate_overall,
    set_manual_progress,
)
from sitetrack.services.project_service import add_subcontractor, create_project, update_subcontractor

PAST = date.today() - timedelta(days=1)


def _project(project_id):
    return db.session.get(Project, project_id)


def _subs(project):
    add_subcontractor(project.id, {"name": "Acme Glazing", "total_quote": "100000",
                                   "progress_status": "completed"})
    add_subcontractor(project.id, {"name": "Delta Drywall", "total_quote": "300000",
                                   "progress_status": "in_progress"})


def _stage_with_items(project, make_item, count):
    phase = make_item("Handover")
    stage = svc.create_stage(project.id, {"work_item_id": phase.id})
    items = [svc.create_item(stage, {"name": f"Check {i}", "end_date": PAST.isoformat()})
             for i in range(count)]
    return stage, items


class TestSignals:
    def test_no_data_is_zero_from_logs(self, project):
        progress = recalculate_overall(project.id)
        assert progress.overall_percentage == 0
        assert progress.calculated_from == "logs"

    def test_logs_average_root_items(self, project, make_item, log):
        a = make_item("Block A")
        make_item("Block B")
        log(a, 50)

        progress = recalculate_overall(project.id)
        assert progress.overall_percentage == 25
        assert progress.calculated_from == "logs"

    def test_subcontractors_are_quote_weighted(self, project):
        _subs(project)
        progress = recalculate_overall(project.id)
        assert progress.overall_percentage == 62.5
        assert progress.calculated_from == "subcontractors"

    def test_zero_quote_gives_no_signal(self, project):
        add_subcontractor(project.id, {"name": "Pro bono", "total_quote": 0, "progress_status": "completed"})
        assert recalculate_overall(project.id).calculated_from == "logs"

    def test_subcontractor_update_recalculates(self, project):
        sub = add_subcontractor(project.id, {"name": "Acme", "total_quote": 1000})
        update_subcontractor(sub, {"progress_status": "delayed"})
        assert get_or_create_progress(project.id).overall_percentage == 25

    def test_negative_quote_refused(self, project):
        with pytest.raises(ValidationError):
            add_subcontractor(project.id, {"name": "Acme", "total_quote": -1})


class TestPrecedence:
    def test_logs_beat_subcontractors(self, project, make_item, log):
        _subs(project)
        log(make_item("Block A"), 40)
        assert recalculate_overall(project.id).calculated_from == "logs"

    def test_acceptance_beats_logs(self, project, make_item, log):
        log(make_item("Block A"), 40)
        stage, items = _stage_with_items(project, make_item, 2)
        svc.approve_item(items[0], 1)

        progress = recalculate_overall(project.id)
        assert progress.calculated_from == "acceptance"
        assert progress.overall_percentage == 50

    def test_acceptance_below_100_until_every_item_approved(self, project, make_item):
        stage, items = _stage_with_items(project, make_item, 3)
        for item in items[:2]:
            svc.approve_item(item, 1)

        assert from_acceptance(project.id) < 100
        assert _project(project.id).status != "completed"

        svc.approve_item(items[2], 1)
        assert from_acceptance(project.id) == 100
        assert recalculate_overall(project.id).overall_percentage == 100
        assert _project(project.id).status == "completed"

    def test_stages_without_items_are_ignored(self, project, make_item):
        svc.create_stage(project.id, {"work_item_id": make_item("Empty").id})
        assert from_acceptance(project.id) is None


class TestManualAndMethods:
    def test_manual_override_is_clamped(self, project):
        progress = set_manual_progress(project.id, 150)
        assert progress.manual_percentage == 100
        assert progress.overall_percentage == 100
        assert progress.calculated_from == "manual"
        assert _project(project.id).status == "completed"

        assert set_manual_progress(project.id, -5).manual_percentage == 0

    def test_manual_needs_a_number(self, project):
        with pytest.raises(ValidationError):
            set_manual_progress(project.id, "lots")

    def test_average_blends_logs_and_subcontractors(self, project, make_item, log):
        _subs(project)
        log(make_item("Block A"), 50)

        progress = recalculate_overall(project.id, "average")
        assert progress.overall_percentage == 56.25
        assert progress.calculated_from == "mixed"

    def test_explicit_method_without_data_is_zero(self, project, make_item, log):
        log(make_item("Block A"), 50)
        progress = recalculate_overall(project.id, "subcontractors")
        assert progress.overall_percentage == 0
        assert progress.calculated_from == "subcontractors"

    def test_configured_default_method(self, app, monkeypatch, project, make_item, log):
        _subs(project)
        log(make_item("Block A"), 50)
        monkeypatch.setitem(app.config, "PROGRESS_METHOD", "subcontractors")
        assert recalculate_overall(project.id).calculated_from == "subcontractors"

    def test_unknown_method_refused(self, project):
        with pytest.raises(ValidationError):
            recalculate_overall(project.id, "vibes")

    def test_recalculation_is_idempotent(self, project, make_item, log):
        _subs(project)
        log(make_item("Block A"), 33.33)
        first = recalculate_overall(project.id)
        snapshot = (first.overall_percentage, first.calculated_from)
        second = recalculate_overall(project.id)
        assert (second.overall_percentage, second.calculated_from) == snapshot


class TestProjects:
    def test_duplicate_code_is_a_conflict(self, project):
        with pytest.raises(ConflictError):
            create_project({"code": project.code, "name": "Copy"})

    def test_code_and_name_required(self):
        with pytest.raises(ValidationError):
            create_project({"code": "X-1"})
