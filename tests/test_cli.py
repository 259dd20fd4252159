"""Tests for the ``flask calculate-progress`` command."""

from sitetrack.models import db
from sitetrack.models.project import ProjectProgress
from sitetrack.models.work_item import WorkItem


def test_recalculates_every_project(app, project, make_item, log):
    log(make_item("Fit-out"), 40)
    db.session.commit()

    result = app.test_cli_runner().invoke(args=["calculate-progress"])

    assert result.exit_code == 0, result.output
    assert "PRJ-001: 40.00% (logs)" in result.output


def test_full_rebuild_repairs_drifted_values(app, project, make_item, log):
    phase = make_item("Fit-out")
    log(phase, 40)
    db.session.query(WorkItem).filter(WorkItem.id == phase.id).update(
        {"completion_percentage": 0.0}, synchronize_session=False,
    )
    db.session.commit()

    result = app.test_cli_runner().invoke(
        args=["calculate-progress", "--project-id", str(project.id), "--full"],
    )

    assert result.exit_code == 0, result.output
    db.session.expire_all()
    assert db.session.get(WorkItem, phase.id).completion_percentage == 40
    assert ProjectProgress.query.filter_by(project_id=project.id).one().overall_percentage == 40


def test_method_option(app, project):
    db.session.commit()
    result = app.test_cli_runner().invoke(
        args=["calculate-progress", "--method", "subcontractors"],
    )
    assert result.exit_code == 0, result.output
    assert "(subcontractors)" in result.output


def test_rejects_unknown_method(app, project):
    result = app.test_cli_runner().invoke(args=["calculate-progress", "--method", "guess"])
    assert result.exit_code != 0


def test_no_projects(app):
    result = app.test_cli_runner().invoke(args=["calculate-progress"])
    assert "No projects found." in result.output
