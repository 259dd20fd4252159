"""Daily progress log service tests."""

from datetime import date, timedelta

import pytest

from sitetrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from sitetrack.models.project import ProjectProgress
from sitetrack.models.work_item import DailyProgressLog
from sitetrack.services.daily_log_service import (
    create_log,
    delete_log,
    list_logs,
    update_log,
    upsert_log,
)
from sitetrack.services.project_service import create_project
from sitetrack.services.work_item_service import create_work_item

TODAY = date.today()
YESTERDAY = TODAY - timedelta(days=1)


def test_create_log_updates_item_and_project(project, make_item):
    phase = make_item("Concrete")
    log = create_log(project.id, {"work_item_id": phase.id, "completion_percentage": 35})

    assert log.log_date == TODAY
    assert phase.completion_percentage == 35
    progress = ProjectProgress.query.filter_by(project_id=project.id).one()
    assert progress.overall_percentage == 35
    assert progress.calculated_from == "logs"


def test_create_log_accepts_site_report_date(project, make_item):
    phase = make_item("Concrete")
    log = create_log(project.id, {
        "work_item_id": phase.id,
        "completion_percentage": 10,
        "log_date": YESTERDAY.strftime("%d.%m.%Y"),
    })
    assert log.log_date == YESTERDAY


def test_duplicate_item_and_date_is_a_conflict(project, make_item):
    phase = make_item("Concrete")
    create_log(project.id, {"work_item_id": phase.id, "completion_percentage": 10})
    with pytest.raises(ConflictError):
        create_log(project.id, {"work_item_id": phase.id, "completion_percentage": 20})


def test_two_items_may_log_the_same_day(project, make_item):
    a = make_item("Concrete")
    b = make_item("Steel")
    create_log(project.id, {"work_item_id": a.id, "completion_percentage": 10})
    create_log(project.id, {"work_item_id": b.id, "completion_percentage": 20})
    assert len(list_logs(project.id)) == 2


@pytest.mark.parametrize("value", [-1, 100.5, "abc"])
def test_out_of_range_percentage_is_refused(project, make_item, value):
    phase = make_item("Concrete")
    with pytest.raises(ValidationError):
        create_log(project.id, {"work_item_id": phase.id, "completion_percentage": value})


def test_missing_fields_are_refused(project, make_item):
    phase = make_item("Concrete")
    with pytest.raises(ValidationError):
        create_log(project.id, {"completion_percentage": 10})
    with pytest.raises(ValidationError):
        create_log(project.id, {"work_item_id": phase.id})


def test_work_item_of_another_project_is_not_found(project):
    other = create_project({"code": "PRJ-002", "name": "Riverside Depot"})
    foreign = create_work_item(other.id, {"name": "Yard"})
    with pytest.raises(NotFoundError):
        create_log(project.id, {"work_item_id": foreign.id, "completion_percentage": 10})


def test_update_log_recomputes(project, make_item):
    phase = make_item("Concrete")
    child = make_item("Pour", parent=phase)
    log = create_log(project.id, {"work_item_id": child.id, "completion_percentage": 10})

    update_log(log, {"completion_percentage": 70})
    assert child.completion_percentage == 70
    assert phase.completion_percentage == 70


def test_update_log_cannot_move_to_another_item(project, make_item):
    a = make_item("Concrete")
    b = make_item("Steel")
    log = create_log(project.id, {"work_item_id": a.id, "completion_percentage": 10})
    with pytest.raises(ValidationError):
        update_log(log, {"work_item_id": b.id})


def test_update_log_date_clash_is_a_conflict(project, make_item):
    phase = make_item("Concrete")
    create_log(project.id, {"work_item_id": phase.id, "completion_percentage": 10,
                            "log_date": YESTERDAY.isoformat()})
    today_log = create_log(project.id, {"work_item_id": phase.id, "completion_percentage": 20})
    with pytest.raises(ConflictError):
        update_log(today_log, {"log_date": YESTERDAY.isoformat()})


def test_delete_log_falls_back_to_earlier_reading(project, make_item):
    phase = make_item("Concrete")
    create_log(project.id, {"work_item_id": phase.id, "completion_percentage": 25,
                            "log_date": YESTERDAY.isoformat()})
    latest = create_log(project.id, {"work_item_id": phase.id, "completion_percentage": 60})
    assert phase.completion_percentage == 60

    delete_log(latest)
    assert phase.completion_percentage == 25


def test_upsert_overwrites_same_day(project, make_item):
    phase = make_item("Concrete")
    upsert_log(project.id, phase.id, TODAY, 40)
    upsert_log(project.id, phase.id, TODAY, 90)

    assert DailyProgressLog.query.filter_by(work_item_id=phase.id).count() == 1
    assert phase.completion_percentage == 90
