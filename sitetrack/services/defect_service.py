"""
Defect service — creation, lifecycle and the shared auto-creation routine.

Lifecycle (validated against ``DEFECT_TRANSITIONS``):
    open → in_progress → fixed → verified
    open → fixed, fixed → in_progress (fix not accepted)

Every lifecycle step appends a DefectHistory row. A verification that leaves
its stage with no unresolved defects re-opens the stage for acceptance.

Usage:
    from sitetrack.services.defect_service import ensure_defect_for_rejection

    defect = ensure_defect_for_rejection(stage, "cracked tile", actor_id=7)
"""

import logging
from datetime import datetime, timezone

from sitetrack.core.exceptions import NotFoundError, ValidationError
from sitetrack.models import db
from sitetrack.models.defect import (
    DEFECT_SEVERITIES,
    UNRESOLVED_DEFECT_STATUSES,
    Defect,
    DefectHistory,
    validate_defect_transition,
)
from sitetrack.models.project import Project
from sitetrack.services.helpers.guarded_write import compare_and_set
from sitetrack.services.helpers.side_effects import run_best_effort
from sitetrack.services.notification import NotificationService

logger = logging.getLogger(__name__)

AUTO_DEFECT_SEVERITY = "high"


def _record_history(defect, action, old_status, new_status, actor_id=None, note=""):
    entry = DefectHistory(
        defect_id=defect.id,
        action=action,
        old_status=old_status,
        new_status=new_status,
        actor_id=actor_id,
        note=note or "",
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def find_unresolved_defect(stage_id: int):
    return (
        Defect.query
        .filter(Defect.stage_id == stage_id, Defect.status.in_(UNRESOLVED_DEFECT_STATUSES))
        .order_by(Defect.id)
        .first()
    )


# ── Auto-creation (shared by stage and item rejection paths) ────────────────

def ensure_defect_for_rejection(
    stage,
    reason: str,
    actor_id: int | None = None,
    *,
    work_item_id: int | None = None,
    acceptance_item_id: int | None = None,
):
    """
    Make sure the stage has an unresolved defect describing a rejection.

    No-op (returns None) when one already exists, whichever path created it.
    Failures are logged and swallowed; the rejection that called this stands.

    Returns:
        The new Defect, or None.
    """
    if stage is None or stage.id is None:
        return None

    def _create():
        if find_unresolved_defect(stage.id) is not None:
            logger.debug("Stage %s already has an unresolved defect; skipping auto-create", stage.id,
                         extra={"stage_id": stage.id, "project_id": stage.project_id})
            return None
        text = (reason or "").strip() or "no reason given"
        defect = Defect(
            project_id=stage.project_id,
            stage_id=stage.id,
            acceptance_item_id=acceptance_item_id,
            work_item_id=work_item_id or stage.work_item_id,
            description=f"Acceptance rejected ({stage.name}): {text}",
            severity=AUTO_DEFECT_SEVERITY,
            status="open",
            reported_by=actor_id,
        )
        db.session.add(defect)
        db.session.flush()
        _record_history(defect, "created", None, "open", actor_id, note=text)
        return defect

    try:
        with db.session.begin_nested():
            defect = _create()
    except Exception:
        logger.warning("Defect auto-creation failed for stage %s", stage.id, exc_info=True,
                       extra={"stage_id": stage.id, "project_id": stage.project_id})
        return None

    if defect is not None:
        logger.info("Defect %s auto-created for stage %s", defect.id, stage.id,
                    extra={"stage_id": stage.id, "defect_id": defect.id, "project_id": stage.project_id})
        run_best_effort("defect notification", NotificationService.defect_created, defect)
    return defect


# ── Manual creation ─────────────────────────────────────────────────────────

def create_defect(project_id: int, data: dict, reporter_id: int | None = None) -> Defect:
    """Record a defect found on site."""
    from sitetrack.models.acceptance import AcceptanceItem, AcceptanceStage
    from sitetrack.models.work_item import WorkItem
    from sitetrack.services.helpers.scoped_queries import get_scoped

    if db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)

    description = (data.get("description") or "").strip()
    if not description:
        raise ValidationError("description is required", details={"description": "required"})
    severity = data.get("severity", "medium")
    if severity not in DEFECT_SEVERITIES:
        raise ValidationError(f"Invalid severity: {severity}",
                              details={"severity": f"one of {sorted(DEFECT_SEVERITIES)}"})

    stage_id = data.get("stage_id")
    if stage_id:
        stage_id = get_scoped(AcceptanceStage, int(stage_id), project_id=project_id).id
    work_item_id = data.get("work_item_id")
    if work_item_id:
        work_item_id = get_scoped(WorkItem, int(work_item_id), project_id=project_id).id
    item_id = data.get("acceptance_item_id")
    if item_id:
        item = db.session.get(AcceptanceItem, int(item_id))
        if item is None or item.stage.project_id != project_id:
            raise NotFoundError(resource="AcceptanceItem", resource_id=item_id, project_id=project_id)
        item_id = item.id
        stage_id = stage_id or item.stage_id

    defect = Defect(
        project_id=project_id,
        stage_id=stage_id or None,
        acceptance_item_id=item_id or None,
        work_item_id=work_item_id or None,
        description=description,
        location=data.get("location", ""),
        severity=severity,
        status="open",
        reported_by=reporter_id,
    )
    db.session.add(defect)
    db.session.flush()
    _record_history(defect, "created", None, "open", reporter_id, note=data.get("note", ""))
    run_best_effort("defect notification", NotificationService.defect_created, defect)
    return defect


# ── Lifecycle ───────────────────────────────────────────────────────────────

def transition_defect(defect: Defect, new_status: str, user_id: int | None = None,
                      note: str = "") -> tuple[bool, str]:
    """
    Move a defect along its lifecycle.

    Returns:
        (True, new_status) or (False, reason) with reason "invalid_state" /
        "concurrent_update".
    """
    old = defect.status
    if not validate_defect_transition(old, new_status):
        return False, "invalid_state"

    now = datetime.now(timezone.utc)
    values = {"status": new_status}
    if new_status == "fixed":
        values.update(fixed_by=user_id, fixed_at=now)
    elif new_status == "verified":
        values.update(verified_by=user_id, verified_at=now)

    if not compare_and_set(defect, "status", old, values):
        return False, "concurrent_update"

    _record_history(defect, "status_changed", old, new_status, user_id, note=note)
    logger.info("Defect %s: %s → %s", defect.id, old, new_status,
                extra={"defect_id": defect.id, "project_id": defect.project_id})
    run_best_effort("defect notification", NotificationService.defect_status_changed,
                    defect, old, new_status)

    if new_status == "verified" and defect.stage_id:
        from sitetrack.services.acceptance_service import resubmit_after_defects_cleared
        resubmit_after_defects_cleared(defect.stage)
    return True, new_status


def list_defects(project_id: int, status: str | None = None, stage_id: int | None = None):
    q = Defect.query.filter_by(project_id=project_id)
    if status:
        q = q.filter_by(status=status)
    if stage_id:
        q = q.filter_by(stage_id=stage_id)
    return q.order_by(Defect.id).all()
