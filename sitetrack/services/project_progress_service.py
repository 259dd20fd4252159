"""
Project Progress reconciliation.

Four signals can describe how far a project is:

  acceptance      mean over stages that have checklist items of
                  approved / total × 100; held at 99.99 until every item of
                  every such stage is approved
  logs            mean of root work items' derived percentages, present once
                  any daily log exists for the project
  subcontractors  quote-weighted status (completed 100, in_progress 50,
                  delayed 25, not_started 0)
  manual          the stored override on ProjectProgress

Method "auto" takes the first signal with data in that order; with no data at
all the project sits at 0% (calculated_from="logs"). Method "average" blends
logs and subcontractors ("mixed" when both are present). Any other method
reads exactly one signal and writes 0 when it has none.

Recalculation is a pure function of stored state: repeated calls with
unchanged inputs store the same value.
"""

import logging
from datetime import datetime, timezone

from flask import current_app, has_app_context

from sitetrack.config import PROGRESS_METHODS
from sitetrack.core.exceptions import NotFoundError, ValidationError
from sitetrack.models import db
from sitetrack.models.acceptance import AcceptanceItem, AcceptanceStage
from sitetrack.models.project import (
    Project,
    ProjectProgress,
    Subcontractor,
    SUBCONTRACTOR_STATUS_WEIGHT,
)
from sitetrack.models.work_item import DailyProgressLog, WorkItem

logger = logging.getLogger(__name__)

# Held below 100 until acceptance is complete
ACCEPTANCE_CAP = 99.99


def get_or_create_progress(project_id: int) -> ProjectProgress:
    """Return the project's progress row, creating it at 0% on first use."""
    progress = ProjectProgress.query.filter_by(project_id=project_id).first()
    if progress is None:
        if db.session.get(Project, project_id) is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        progress = ProjectProgress(project_id=project_id, overall_percentage=0.0, calculated_from="logs")
        db.session.add(progress)
        db.session.flush()
    return progress


# ── Signals ─────────────────────────────────────────────────────────────────

def from_acceptance(project_id: int) -> float | None:
    rows = (
        db.session.query(
            AcceptanceStage.id,
            db.func.count(AcceptanceItem.id),
            db.func.sum(db.case((AcceptanceItem.acceptance_status == "approved", 1), else_=0)),
        )
        .join(AcceptanceItem, AcceptanceItem.stage_id == AcceptanceStage.id)
        .filter(AcceptanceStage.project_id == project_id)
        .group_by(AcceptanceStage.id)
        .all()
    )
    if not rows:
        return None

    ratios = []
    all_approved = True
    for _stage_id, total, approved in rows:
        approved = int(approved or 0)
        ratios.append(approved / total * 100)
        if approved < total:
            all_approved = False
    if all_approved:
        return 100.0
    return min(round(sum(ratios) / len(ratios), 2), ACCEPTANCE_CAP)


def from_logs(project_id: int) -> float | None:
    has_logs = (
        db.session.query(DailyProgressLog.id)
        .filter(DailyProgressLog.project_id == project_id)
        .first()
    )
    if has_logs is None:
        return None
    roots = [
        float(pct or 0)
        for (pct,) in db.session.query(WorkItem.completion_percentage)
        .filter(WorkItem.project_id == project_id, WorkItem.parent_id.is_(None))
        .all()
    ]
    if not roots:
        return None
    return round(sum(roots) / len(roots), 2)


def from_subcontractors(project_id: int) -> float | None:
    subs = Subcontractor.query.filter_by(project_id=project_id).all()
    total_quote = sum(float(s.total_quote or 0) for s in subs)
    if total_quote <= 0:
        return None
    delivered = sum(
        float(s.total_quote or 0) * SUBCONTRACTOR_STATUS_WEIGHT.get(s.progress_status, 0.0)
        for s in subs
    )
    return round(delivered / total_quote, 2)


def from_manual(project_id: int) -> float | None:
    progress = get_or_create_progress(project_id)
    return progress.manual_percentage


_SIGNALS = {
    "acceptance": from_acceptance,
    "logs": from_logs,
    "subcontractors": from_subcontractors,
    "manual": from_manual,
}
_PRECEDENCE = ("acceptance", "logs", "subcontractors", "manual")


def _default_method() -> str:
    if has_app_context():
        return current_app.config.get("PROGRESS_METHOD", "auto")
    return "auto"


def _select(project_id: int, method: str) -> tuple[float, str]:
    if method == "auto":
        for source in _PRECEDENCE:
            value = _SIGNALS[source](project_id)
            if value is not None:
                return value, source
        return 0.0, "logs"

    if method == "average":
        logs = from_logs(project_id)
        subs = from_subcontractors(project_id)
        if logs is not None and subs is not None:
            return round((logs + subs) / 2, 2), "mixed"
        if subs is not None:
            return subs, "subcontractors"
        return (logs or 0.0), "logs"

    value = _SIGNALS[method](project_id)
    return (value if value is not None else 0.0), method


# ── Reconciliation ──────────────────────────────────────────────────────────

def recalculate_overall(project_id: int, method: str | None = None) -> ProjectProgress:
    """
    Pick the governing signal and store it on the project's progress row.

    A project reaching 100% is marked completed.
    """
    method = method or _default_method()
    if method not in PROGRESS_METHODS:
        raise ValidationError(
            f"Unknown progress method: {method}",
            details={"method": f"one of {', '.join(PROGRESS_METHODS)}"},
        )

    progress = get_or_create_progress(project_id)
    value, source = _select(project_id, method)
    value = max(0.0, min(100.0, round(float(value), 2)))

    if progress.overall_percentage != value or progress.calculated_from != source:
        logger.info(
            "Project %s progress %.2f%% (%s) → %.2f%% (%s)",
            project_id, progress.overall_percentage or 0, progress.calculated_from, value, source,
            extra={"project_id": project_id},
        )
    progress.overall_percentage = value
    progress.calculated_from = source
    progress.last_calculated_at = datetime.now(timezone.utc)

    if value >= 100:
        project = db.session.get(Project, project_id)
        if project is not None and project.status != "completed":
            project.status = "completed"
            logger.info("Project %s marked completed", project_id, extra={"project_id": project_id})

    db.session.flush()
    return progress


def set_manual_progress(project_id: int, percentage) -> ProjectProgress:
    """Store a manual override (clamped to 0..100) and reconcile."""
    try:
        pct = float(percentage)
    except (TypeError, ValueError) as exc:
        raise ValidationError("percentage must be numeric", details={"percentage": str(percentage)}) from exc
    progress = get_or_create_progress(project_id)
    progress.manual_percentage = max(0.0, min(100.0, round(pct, 2)))
    db.session.flush()
    return recalculate_overall(project_id)
