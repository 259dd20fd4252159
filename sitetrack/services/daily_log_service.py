"""
Daily progress log service.

A log is the only external input to leaf progress. Every create, update,
upsert and delete ends in ``recompute`` for the logged work item, which
cascades to its ancestors and the project.
"""

import logging
from datetime import date

from sitetrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from sitetrack.models import db
from sitetrack.models.work_item import DailyProgressLog, WorkItem
from sitetrack.services.helpers.scoped_queries import get_scoped
from sitetrack.services.progress_aggregator import recompute
from sitetrack.utils.helpers import parse_date, parse_percentage

logger = logging.getLogger(__name__)


def _percentage(value) -> float:
    try:
        return parse_percentage(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"completion_percentage": str(value)}) from exc


def _find(project_id: int, work_item_id: int, log_date: date):
    return DailyProgressLog.query.filter_by(
        project_id=project_id, work_item_id=work_item_id, log_date=log_date,
    ).first()


def list_logs(project_id: int, work_item_id: int | None = None) -> list[DailyProgressLog]:
    q = DailyProgressLog.query.filter_by(project_id=project_id)
    if work_item_id:
        q = q.filter_by(work_item_id=work_item_id)
    return q.order_by(DailyProgressLog.log_date.desc(), DailyProgressLog.id.desc()).all()


def create_log(project_id: int, data: dict, author_id: int | None = None) -> DailyProgressLog:
    """
    Record a reading for one work item on one date.

    Raises:
        ValidationError: missing work item / bad percentage.
        NotFoundError: work item not in this project.
        ConflictError: a log already exists for that item and date.
    """
    if not data.get("work_item_id"):
        raise ValidationError("work_item_id is required", details={"work_item_id": "required"})
    if "completion_percentage" not in data:
        raise ValidationError("completion_percentage is required",
                              details={"completion_percentage": "required"})

    item = get_scoped(WorkItem, int(data["work_item_id"]), project_id=project_id)
    log_date = parse_date(data.get("log_date")) if data.get("log_date") else date.today()
    if log_date is None:
        raise ValidationError("log_date is not a valid date", details={"log_date": str(data.get("log_date"))})

    if _find(project_id, item.id, log_date) is not None:
        raise ConflictError("DailyProgressLog", "log_date", log_date.isoformat())

    log = DailyProgressLog(
        project_id=project_id,
        work_item_id=item.id,
        log_date=log_date,
        completion_percentage=_percentage(data["completion_percentage"]),
        author_id=author_id,
        notes=data.get("notes", ""),
    )
    db.session.add(log)
    db.session.flush()
    logger.info("Daily log %s: item %s %s → %.2f%%", log.id, item.id, log_date,
                log.completion_percentage, extra={"project_id": project_id, "work_item_id": item.id})

    recompute(item.id)
    return log


def update_log(log: DailyProgressLog, data: dict) -> DailyProgressLog:
    """Change the reading, notes or date of an existing log."""
    if "work_item_id" in data and int(data["work_item_id"]) != log.work_item_id:
        raise ValidationError("A log cannot be moved to another work item",
                              details={"work_item_id": "immutable"})

    if "log_date" in data:
        new_date = parse_date(data["log_date"])
        if new_date is None:
            raise ValidationError("log_date is not a valid date", details={"log_date": str(data["log_date"])})
        if new_date != log.log_date:
            clash = _find(log.project_id, log.work_item_id, new_date)
            if clash is not None:
                raise ConflictError("DailyProgressLog", "log_date", new_date.isoformat())
            log.log_date = new_date
    if "completion_percentage" in data:
        log.completion_percentage = _percentage(data["completion_percentage"])
    if "notes" in data:
        log.notes = data["notes"] or ""
    db.session.flush()

    recompute(log.work_item_id)
    return log


def delete_log(log: DailyProgressLog) -> None:
    work_item_id = log.work_item_id
    db.session.delete(log)
    db.session.flush()
    recompute(work_item_id)


def upsert_log(
    project_id: int,
    work_item_id: int,
    log_date: date,
    percentage,
    author_id: int | None = None,
    notes: str = "",
) -> DailyProgressLog:
    """Create or overwrite the log for (work item, date)."""
    item = db.session.get(WorkItem, work_item_id)
    if item is None or item.project_id != project_id:
        raise NotFoundError(resource="WorkItem", resource_id=work_item_id, project_id=project_id)

    pct = _percentage(percentage)
    log = _find(project_id, work_item_id, log_date)
    if log is None:
        log = DailyProgressLog(
            project_id=project_id,
            work_item_id=work_item_id,
            log_date=log_date,
            completion_percentage=pct,
            author_id=author_id,
            notes=notes,
        )
        db.session.add(log)
    else:
        log.completion_percentage = pct
        if notes:
            log.notes = notes
    db.session.flush()

    recompute(work_item_id)
    return log
