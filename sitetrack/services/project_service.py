"""Project and subcontractor maintenance."""

import logging
from decimal import Decimal, InvalidOperation

from sitetrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from sitetrack.models import db
from sitetrack.models.project import PROJECT_STATUSES, SUBCONTRACTOR_STATUSES, Project, Subcontractor
from sitetrack.services.project_progress_service import get_or_create_progress, recalculate_overall
from sitetrack.utils.helpers import parse_date

logger = logging.getLogger(__name__)


def create_project(data: dict) -> Project:
    code = (data.get("code") or "").strip()
    name = (data.get("name") or "").strip()
    if not code or not name:
        raise ValidationError("code and name are required",
                              details={k: "required" for k in ("code", "name") if not data.get(k)})
    if Project.query.filter_by(code=code).first() is not None:
        raise ConflictError("Project", "code", code)
    status = data.get("status", "planning")
    if status not in PROJECT_STATUSES:
        raise ValidationError(f"Invalid status: {status}", details={"status": f"one of {sorted(PROJECT_STATUSES)}"})

    project = Project(
        code=code,
        name=name,
        description=data.get("description", ""),
        status=status,
        start_date=parse_date(data.get("start_date")),
        end_date=parse_date(data.get("end_date")),
        project_manager_id=data.get("project_manager_id"),
        customer_id=data.get("customer_id"),
    )
    db.session.add(project)
    db.session.flush()
    get_or_create_progress(project.id)
    logger.info("Project %s created (%s)", project.id, code, extra={"project_id": project.id})
    return project


def _quote(value) -> Decimal:
    try:
        quote = Decimal(str(value))
    except (InvalidOperation, TypeError) as exc:
        raise ValidationError("total_quote must be numeric", details={"total_quote": str(value)}) from exc
    if quote < 0:
        raise ValidationError("total_quote must not be negative", details={"total_quote": str(value)})
    return quote


def _progress_status(value) -> str:
    if value not in SUBCONTRACTOR_STATUSES:
        raise ValidationError(f"Invalid progress_status: {value}",
                              details={"progress_status": f"one of {sorted(SUBCONTRACTOR_STATUSES)}"})
    return value


def add_subcontractor(project_id: int, data: dict) -> Subcontractor:
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    sub = Subcontractor(
        project_id=project_id,
        name=name,
        trade=data.get("trade", ""),
        total_quote=_quote(data.get("total_quote", 0)),
        progress_status=_progress_status(data.get("progress_status", "not_started")),
    )
    db.session.add(sub)
    db.session.flush()
    recalculate_overall(project_id)
    return sub


def update_subcontractor(sub: Subcontractor, data: dict) -> Subcontractor:
    if "name" in data:
        sub.name = (data.get("name") or "").strip() or sub.name
    if "trade" in data:
        sub.trade = data["trade"] or ""
    if "total_quote" in data:
        sub.total_quote = _quote(data["total_quote"])
    if "progress_status" in data:
        sub.progress_status = _progress_status(data["progress_status"])
    db.session.flush()
    recalculate_overall(sub.project_id)
    return sub
