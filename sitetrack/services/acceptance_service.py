"""
Acceptance service — stage and item state machines.

Every guarded transition:
  1. checks the stage/item is in the step's required prior state,
  2. checks step-specific gates (open defects, can_accept),
  3. writes with compare-and-set on the status column,
and returns ``(ok, detail)``: ``(True, new_status)`` or ``(False, reason)``
with reason in {invalid_state, open_defects, cannot_accept, not_supported,
concurrent_update}. Refusals have no side effects.

Defect auto-creation is reached from two places, the explicit reject
operations and the post-save checks (``_on_stage_saved`` /
``_on_item_saved``); both call the idempotent
``defect_service.ensure_defect_for_rejection``.

Usage:
    from sitetrack.services.acceptance_service import approve_stage, approve_item

    ok, detail = approve_stage(stage, "owner", user_id=3)
    ok, detail = approve_item(item, user_id=3)
"""

import logging
from datetime import date, datetime, timezone

from sitetrack.core.exceptions import NotFoundError, ValidationError
from sitetrack.models import db
from sitetrack.models.acceptance import (
    DEFECT_CHECK_STATUSES,
    ITEM_REJECTABLE_FROM,
    ITEM_STEPS,
    STAGE_STEPS,
    WORKFLOW_TERMINAL,
    AcceptanceItem,
    AcceptanceStage,
    get_workflow_variant,
    stage_rejectable_from,
    stage_steps_for,
)
from sitetrack.models.audit import write_audit
from sitetrack.models.defect import OPEN_DEFECT_STATUSES, Defect
from sitetrack.models.project import Project
from sitetrack.models.work_item import WorkItem
from sitetrack.services.defect_service import ensure_defect_for_rejection
from sitetrack.services.helpers.guarded_write import compare_and_set
from sitetrack.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from sitetrack.services.helpers.side_effects import run_best_effort
from sitetrack.services.notification import NotificationService
from sitetrack.utils.helpers import parse_date

logger = logging.getLogger(__name__)

_STAGE_APPROVAL_FIELDS = [f"{step}_approved_{suffix}" for step in STAGE_STEPS for suffix in ("by", "at")]


def _now():
    return datetime.now(timezone.utc)


def _recalculate_project(project_id: int) -> None:
    from sitetrack.services.project_progress_service import recalculate_overall
    recalculate_overall(project_id)


# ══════════════════════════════════════════════════════════════════════════════
# Stages
# ══════════════════════════════════════════════════════════════════════════════


def _next_sequence(project_id: int) -> int:
    last = (
        db.session.query(db.func.max(AcceptanceStage.sequence))
        .filter(AcceptanceStage.project_id == project_id)
        .scalar()
    )
    return (last or 0) + 1


def create_stage(project_id: int, data: dict, *, is_auto_created: bool = False) -> AcceptanceStage:
    """
    Open an acceptance stage over a root work item.

    Raises:
        NotFoundError: project or work item missing.
        ValidationError: work item is not a root ("phase") item.
    """
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    if not data.get("work_item_id"):
        raise ValidationError("work_item_id is required", details={"work_item_id": "required"})

    phase = get_scoped(WorkItem, int(data["work_item_id"]), project_id=project_id)
    if not phase.is_root:
        raise ValidationError(
            "Acceptance stages can only be attached to root work items",
            details={"work_item_id": str(phase.id)},
        )

    stage = AcceptanceStage(
        project_id=project_id,
        work_item_id=phase.id,
        name=(data.get("name") or phase.name).strip(),
        description=data.get("description", ""),
        sequence=data.get("sequence") or _next_sequence(project_id),
        status="pending",
        is_auto_created=is_auto_created,
    )
    db.session.add(stage)
    db.session.flush()
    logger.info("Acceptance stage %s created for work item %s", stage.id, phase.id,
                extra={"project_id": project_id, "stage_id": stage.id})
    run_best_effort("stage notification", NotificationService.stage_created, stage)
    return stage


def create_stage_for_phase(phase: WorkItem):
    """Create the stage for a completed root item unless it already has one."""
    if AcceptanceStage.query.filter_by(work_item_id=phase.id).first() is not None:
        return None
    return create_stage(phase.project_id, {"work_item_id": phase.id}, is_auto_created=True)


def _after_stage_change(stage, old_status, actor_id, action):
    run_best_effort(
        "stage audit", write_audit,
        entity_type="acceptance_stage", entity_id=stage.id,
        action=f"acceptance_stage.{action}", project_id=stage.project_id, actor_id=actor_id,
        diff={"status": {"old": old_status, "new": stage.status}},
    )
    run_best_effort("stage notification", NotificationService.stage_status_changed,
                    stage, old_status, stage.status)
    _on_stage_saved(stage, actor_id)


def _on_stage_saved(stage, actor_id=None):
    """Post-save defect check for review-bearing statuses."""
    if stage.status not in DEFECT_CHECK_STATUSES:
        return None
    if stage.acceptability_status != "not_acceptable":
        return None
    reason = stage.rejection_reason or f"Stage '{stage.name}' is not acceptable"
    return ensure_defect_for_rejection(stage, reason, actor_id)


def _approve_stage_step(stage: AcceptanceStage, step: str, user_id) -> tuple[bool, str]:
    variant = get_workflow_variant()
    if step not in stage_steps_for(variant):
        return False, "not_supported"

    expected, target = STAGE_STEPS[step]
    if stage.status != expected:
        return False, "invalid_state"
    if target == WORKFLOW_TERMINAL[variant] and stage.has_open_defects:
        return False, "open_defects"

    values = {
        "status": target,
        f"{step}_approved_by": user_id,
        f"{step}_approved_at": _now(),
    }
    if not compare_and_set(stage, "status", expected, values):
        return False, "concurrent_update"

    logger.info("Stage %s: %s → %s", stage.id, expected, target,
                extra={"stage_id": stage.id, "project_id": stage.project_id})

    if step == "customer":
        if stage.items.count() == 0:
            _create_default_item(stage)
        _recalculate_project(stage.project_id)

    _after_stage_change(stage, expected, user_id, f"approve_{step}")
    return True, target


def approve_supervisor(stage, user_id=None):
    return _approve_stage_step(stage, "supervisor", user_id)


def approve_project_manager(stage, user_id=None):
    return _approve_stage_step(stage, "project_manager", user_id)


def approve_customer(stage, user_id=None):
    """project_manager_approved → customer_approved; seeds a default item on empty stages."""
    return _approve_stage_step(stage, "customer", user_id)


def approve_design(stage, user_id=None):
    return _approve_stage_step(stage, "design", user_id)


def approve_owner(stage, user_id=None):
    """design_approved → owner_approved; refused while any defect is unverified."""
    return _approve_stage_step(stage, "owner", user_id)


_STAGE_APPROVERS = {
    "supervisor": approve_supervisor,
    "project_manager": approve_project_manager,
    "customer": approve_customer,
    "design": approve_design,
    "owner": approve_owner,
}


def approve_stage(stage, step: str, user_id=None) -> tuple[bool, str]:
    """Dispatch to the named approval step."""
    approver = _STAGE_APPROVERS.get(step)
    if approver is None:
        return False, "not_supported"
    return approver(stage, user_id)


def reject_stage(stage: AcceptanceStage, reason: str, user_id=None) -> tuple[bool, str]:
    """Reject from any non-terminal state and raise the rejection defect."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required", details={"reason": "required"})

    old = stage.status
    if old not in stage_rejectable_from(get_workflow_variant()):
        return False, "invalid_state"

    values = {
        "status": "rejected",
        "rejected_by": user_id,
        "rejected_at": _now(),
        "rejection_reason": reason,
    }
    if not compare_and_set(stage, "status", old, values):
        return False, "concurrent_update"

    logger.info("Stage %s rejected from %s", stage.id, old,
                extra={"stage_id": stage.id, "project_id": stage.project_id})
    ensure_defect_for_rejection(stage, reason, user_id)
    _after_stage_change(stage, old, user_id, "reject")
    return True, "rejected"


def resubmit_stage(stage: AcceptanceStage, user_id=None) -> tuple[bool, str]:
    """rejected → pending with every approval and rejection field cleared."""
    if stage.status != "rejected":
        return False, "invalid_state"
    values = {field: None for field in _STAGE_APPROVAL_FIELDS}
    values.update(status="pending", rejected_by=None, rejected_at=None, rejection_reason=None)
    if not compare_and_set(stage, "status", "rejected", values):
        return False, "concurrent_update"
    _after_stage_change(stage, "rejected", user_id, "resubmit")
    return True, "pending"


def check_stage_completion(stage: AcceptanceStage, user_id=None) -> bool:
    """
    A pending stage whose items are all approved moves to supervisor_approved.

    The user who signed off the last item is recorded as the supervisor.
    """
    if stage.status != "pending" or not stage.is_completed:
        return False
    if not compare_and_set(stage, "status", "pending", {
        "status": "supervisor_approved",
        "supervisor_approved_by": user_id,
        "supervisor_approved_at": _now(),
    }):
        return False
    logger.info("Stage %s: all items approved, advanced to supervisor_approved", stage.id,
                extra={"stage_id": stage.id, "project_id": stage.project_id})
    _after_stage_change(stage, "pending", user_id, "items_completed")
    return True


def resubmit_after_defects_cleared(stage: AcceptanceStage) -> bool:
    """
    Re-open a stage for acceptance once none of its defects is unresolved.

    Rejected items return to draft / pending sign-off; a rejected stage
    returns to pending.
    """
    if stage is None or stage.has_open_defects:
        return False

    reopened = 0
    rejected_items = stage.items.filter(
        (AcceptanceItem.workflow_status == "rejected") | (AcceptanceItem.acceptance_status == "rejected")
    ).all()
    for item in rejected_items:
        if item.workflow_status == "rejected":
            item.workflow_status = "draft"
        if item.acceptance_status == "rejected":
            item.acceptance_status = "not_started"
            item.refresh_acceptance_status()
        item.rejected_by = None
        item.rejected_at = None
        item.rejection_reason = None
        reopened += 1
    db.session.flush()

    if stage.status == "rejected":
        resubmit_stage(stage)

    logger.info("Stage %s re-opened after defect verification (%d items reset)", stage.id, reopened,
                extra={"stage_id": stage.id, "project_id": stage.project_id})
    _recalculate_project(stage.project_id)
    return True


# ══════════════════════════════════════════════════════════════════════════════
# Items
# ══════════════════════════════════════════════════════════════════════════════


def _item_dates(data, start=None, end=None):
    if "start_date" in data:
        start = parse_date(data.get("start_date"))
    if "end_date" in data:
        end = parse_date(data.get("end_date"))
    if start and end and end < start:
        raise ValidationError("end_date must not be before start_date",
                              details={"end_date": end.isoformat()})
    return start, end


def _item_work_item_id(stage, value):
    if value in (None, ""):
        return None
    wi = get_scoped_or_none(WorkItem, int(value), project_id=stage.project_id)
    if wi is None:
        raise ValidationError("work_item_id must reference a work item of the same project",
                              details={"work_item_id": str(value)})
    return wi.id


def create_item(stage: AcceptanceStage, data: dict) -> AcceptanceItem:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    start, end = _item_dates(data)
    last = (
        db.session.query(db.func.max(AcceptanceItem.sort_order))
        .filter(AcceptanceItem.stage_id == stage.id)
        .scalar()
    )
    item = AcceptanceItem(
        stage_id=stage.id,
        work_item_id=_item_work_item_id(stage, data.get("work_item_id")),
        template_id=data.get("template_id"),
        name=name,
        description=data.get("description", ""),
        start_date=start,
        end_date=end,
        sort_order=data.get("sort_order") or (last or 0) + 1,
    )
    db.session.add(item)
    db.session.flush()
    return item


def _create_default_item(stage: AcceptanceStage) -> AcceptanceItem:
    phase = db.session.get(WorkItem, stage.work_item_id)
    today = date.today()
    item = AcceptanceItem(
        stage_id=stage.id,
        work_item_id=phase.id if phase else None,
        name=stage.name,
        description="Default acceptance item",
        start_date=min(phase.start_date, today) if phase and phase.start_date else today,
        end_date=today,
        sort_order=1,
        is_default=True,
        acceptance_status="pending",
    )
    db.session.add(item)
    db.session.flush()
    logger.info("Default acceptance item %s created for stage %s", item.id, stage.id,
                extra={"stage_id": stage.id, "project_id": stage.project_id})
    return item


def update_item(item: AcceptanceItem, data: dict) -> AcceptanceItem:
    if item.acceptance_status == "approved":
        raise ValidationError("Approved acceptance items cannot be modified")
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        item.name = name
    if "description" in data:
        item.description = data["description"] or ""
    item.start_date, item.end_date = _item_dates(data, item.start_date, item.end_date)
    if "work_item_id" in data:
        item.work_item_id = _item_work_item_id(item.stage, data["work_item_id"])
    if "template_id" in data:
        item.template_id = data["template_id"]
    if "sort_order" in data:
        item.sort_order = int(data["sort_order"] or 0)
    db.session.flush()
    return item


def delete_item(item: AcceptanceItem) -> None:
    if item.acceptance_status == "approved":
        raise ValidationError("Approved acceptance items cannot be deleted")
    project_id = item.stage.project_id
    db.session.delete(item)
    db.session.flush()
    _recalculate_project(project_id)


def _work_item_has_open_defects(item: AcceptanceItem) -> bool:
    if not item.work_item_id:
        return False
    return (
        Defect.query
        .filter(Defect.work_item_id == item.work_item_id, Defect.status.in_(OPEN_DEFECT_STATUSES))
        .count() > 0
    )


def _audit_item(item, action, actor_id, field, old, new):
    run_best_effort(
        "item audit", write_audit,
        entity_type="acceptance_item", entity_id=item.id,
        action=f"acceptance_item.{action}", project_id=item.stage.project_id, actor_id=actor_id,
        diff={field: {"old": old, "new": new}},
    )


def _on_item_saved(item: AcceptanceItem, old_workflow_status: str, actor_id=None):
    """Post-save defect check: entering workflow ``rejected`` raises a defect."""
    if item.workflow_status == "rejected" and old_workflow_status != "rejected":
        return ensure_defect_for_rejection(
            item.stage, item.rejection_reason or "", actor_id,
            work_item_id=item.work_item_id, acceptance_item_id=item.id,
        )
    return None


def _on_item_approved(item: AcceptanceItem, user_id) -> None:
    """Stage completion check, then the approval shows up as a 100% daily log."""
    stage = item.stage
    check_stage_completion(stage, user_id)
    if item.work_item_id:
        from sitetrack.services.daily_log_service import upsert_log
        upsert_log(
            stage.project_id, item.work_item_id, date.today(), 100,
            author_id=user_id, notes=f"Acceptance item {item.id} approved",
        )
    else:
        _recalculate_project(stage.project_id)


# ── Item workflow chain ─────────────────────────────────────────────────────

def _item_step(item: AcceptanceItem, step: str, user_id) -> tuple[bool, str]:
    expected, target = ITEM_STEPS[step]
    if item.workflow_status != expected:
        return False, "invalid_state"
    if step in ("project_manager", "customer") and _work_item_has_open_defects(item):
        return False, "open_defects"

    now = _now()
    if step == "submit":
        values = {"workflow_status": target, "submitted_by": user_id, "submitted_at": now}
    else:
        values = {"workflow_status": target, f"{step}_approved_by": user_id, f"{step}_approved_at": now}
    became_approved = step == "customer" and item.acceptance_status != "approved"
    if became_approved:
        values.update(acceptance_status="approved", approved_by=user_id, approved_at=now)

    if not compare_and_set(item, "workflow_status", expected, values):
        return False, "concurrent_update"

    _audit_item(item, step, user_id, "workflow_status", expected, target)
    if became_approved:
        _on_item_approved(item, user_id)
    return True, target


def submit_item(item, user_id=None):
    return _item_step(item, "submit", user_id)


def approve_item_step(item, step: str, user_id=None) -> tuple[bool, str]:
    """Advance the item workflow by one role step (supervisor / project_manager / customer)."""
    if step not in ITEM_STEPS or step == "submit":
        return False, "not_supported"
    return _item_step(item, step, user_id)


def workflow_reject_item(item: AcceptanceItem, reason: str, user_id=None) -> tuple[bool, str]:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required", details={"reason": "required"})
    old = item.workflow_status
    if old not in ITEM_REJECTABLE_FROM:
        return False, "invalid_state"
    values = {
        "workflow_status": "rejected",
        "rejected_by": user_id,
        "rejected_at": _now(),
        "rejection_reason": reason,
    }
    if not compare_and_set(item, "workflow_status", old, values):
        return False, "concurrent_update"
    _audit_item(item, "workflow_reject", user_id, "workflow_status", old, "rejected")
    _on_item_saved(item, old, user_id)
    return True, "rejected"


# ── Item sign-off ───────────────────────────────────────────────────────────

def _refresh_pending(item: AcceptanceItem) -> None:
    before = item.acceptance_status
    if item.refresh_acceptance_status() != before:
        db.session.flush()


def approve_item(item: AcceptanceItem, user_id=None, notes: str | None = None) -> tuple[bool, str]:
    _refresh_pending(item)
    if not item.can_accept:
        return False, "cannot_accept"
    values = {
        "acceptance_status": "approved",
        "approved_by": user_id,
        "approved_at": _now(),
        "approval_notes": notes,
    }
    if not compare_and_set(item, "acceptance_status", "pending", values):
        return False, "concurrent_update"
    _audit_item(item, "approve", user_id, "acceptance_status", "pending", "approved")
    _on_item_approved(item, user_id)
    return True, "approved"


def reject_item(item: AcceptanceItem, reason: str, user_id=None) -> tuple[bool, str]:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required", details={"reason": "required"})
    _refresh_pending(item)
    if not item.can_accept:
        return False, "cannot_accept"
    values = {
        "acceptance_status": "rejected",
        "rejected_by": user_id,
        "rejected_at": _now(),
        "rejection_reason": reason,
    }
    if not compare_and_set(item, "acceptance_status", "pending", values):
        return False, "concurrent_update"
    _audit_item(item, "reject", user_id, "acceptance_status", "pending", "rejected")
    ensure_defect_for_rejection(
        item.stage, reason, user_id,
        work_item_id=item.work_item_id, acceptance_item_id=item.id,
    )
    return True, "rejected"


def reset_acceptance(item: AcceptanceItem) -> tuple[bool, str]:
    """Clear sign-off fields while the item is still awaiting a decision."""
    old = item.acceptance_status
    if old in ("approved", "rejected"):
        return False, "invalid_state"
    values = {
        "acceptance_status": "pending" if item.is_completed else "not_started",
        "approved_by": None,
        "approved_at": None,
        "approval_notes": None,
        "rejected_by": None,
        "rejected_at": None,
        "rejection_reason": None,
    }
    if not compare_and_set(item, "acceptance_status", old, values):
        return False, "concurrent_update"
    return True, item.acceptance_status
