"""
Acceptance (quality sign-off) models.

Models:
    - AcceptanceStage:  gate tied to one root work item ("phase"), advanced
                        through a fixed sequence of role approvals
    - AcceptanceItem:   checklist entry inside a stage with its own shorter
                        workflow plus a separate sign-off status

Stage chain (no skipping):
    pending → supervisor_approved → project_manager_approved
            → customer_approved → design_approved → owner_approved
    rejected is reachable from every non-terminal state and left only by
    re-submission (back to pending).

The chain terminates at ``owner_approved`` in the "extended" workflow and at
``customer_approved`` in the "simplified" one (``ACCEPTANCE_WORKFLOW``).

Item workflow:
    draft → submitted → supervisor_approved → project_manager_approved → customer_approved
    rejected from any non-terminal state.
"""

from datetime import date, datetime, timezone

from flask import current_app, has_app_context
from sqlalchemy import event

from sitetrack.models import db
from sitetrack.models.defect import Defect, UNRESOLVED_DEFECT_STATUSES


# ── Constants ────────────────────────────────────────────────────────────────

STAGE_CHAIN = [
    "pending",
    "supervisor_approved",
    "project_manager_approved",
    "customer_approved",
    "design_approved",
    "owner_approved",
]
STAGE_STATUSES = set(STAGE_CHAIN) | {"rejected"}

# step name → (required prior status, resulting status)
STAGE_STEPS = {
    "supervisor":      ("pending", "supervisor_approved"),
    "project_manager": ("supervisor_approved", "project_manager_approved"),
    "customer":        ("project_manager_approved", "customer_approved"),
    "design":          ("customer_approved", "design_approved"),
    "owner":           ("design_approved", "owner_approved"),
}

WORKFLOW_TERMINAL = {
    "extended": "owner_approved",
    "simplified": "customer_approved",
}

# Stage statuses that re-run the "ensure defect" check after every save
DEFECT_CHECK_STATUSES = frozenset({"project_manager_approved", "customer_approved", "rejected"})

ITEM_ACCEPTANCE_STATUSES = {"not_started", "pending", "approved", "rejected"}
ITEM_WORKFLOW_STATUSES = {
    "draft", "submitted", "supervisor_approved",
    "project_manager_approved", "customer_approved", "rejected",
}

ITEM_STEPS = {
    "submit":          ("draft", "submitted"),
    "supervisor":      ("submitted", "supervisor_approved"),
    "project_manager": ("supervisor_approved", "project_manager_approved"),
    "customer":        ("project_manager_approved", "customer_approved"),
}
ITEM_REJECTABLE_FROM = ("draft", "submitted", "supervisor_approved", "project_manager_approved")


def get_workflow_variant():
    """Return the configured stage workflow ("extended" when unset or unknown)."""
    variant = "extended"
    if has_app_context():
        variant = current_app.config.get("ACCEPTANCE_WORKFLOW", "extended")
    return variant if variant in WORKFLOW_TERMINAL else "extended"


def stage_steps_for(variant):
    """Ordered step names available in *variant*."""
    terminal = WORKFLOW_TERMINAL[variant]
    steps = []
    for step, (_, to_status) in STAGE_STEPS.items():
        steps.append(step)
        if to_status == terminal:
            break
    return steps


def stage_rejectable_from(variant):
    """Statuses from which a stage may still be rejected in *variant*."""
    terminal = WORKFLOW_TERMINAL[variant]
    return tuple(STAGE_CHAIN[:STAGE_CHAIN.index(terminal)])


# ═════════════════════════════════════════════════════════════════════════════
# AcceptanceStage
# ═════════════════════════════════════════════════════════════════════════════


class AcceptanceStage(db.Model):
    """Quality gate over one phase of the work breakdown."""

    __tablename__ = "acceptance_stages"
    __table_args__ = (
        db.Index("idx_acceptance_stages_project_seq", "project_id", "sequence"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    sequence = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        db.String(30), nullable=False, default="pending",
        comment="pending | supervisor_approved | project_manager_approved | customer_approved"
                " | design_approved | owner_approved | rejected",
    )
    is_auto_created = db.Column(db.Boolean, nullable=False, default=False)

    # Per-step approvers
    supervisor_approved_by = db.Column(db.Integer, nullable=True)
    supervisor_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    project_manager_approved_by = db.Column(db.Integer, nullable=True)
    project_manager_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    customer_approved_by = db.Column(db.Integer, nullable=True)
    customer_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    design_approved_by = db.Column(db.Integer, nullable=True)
    design_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    owner_approved_by = db.Column(db.Integer, nullable=True)
    owner_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rejected_by = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    items = db.relationship(
        "AcceptanceItem", backref="stage", lazy="dynamic",
        cascade="all, delete-orphan", order_by="AcceptanceItem.sort_order",
    )

    # ── Derived state ────────────────────────────────────────────────────

    def is_fully_approved_in(self, variant):
        return self.status == WORKFLOW_TERMINAL[variant]

    @property
    def is_fully_approved(self):
        return self.is_fully_approved_in(get_workflow_variant())

    @property
    def has_open_defects(self):
        """Any defect short of verified counts, whatever its severity."""
        return self.defects.filter(Defect.status.in_(UNRESOLVED_DEFECT_STATUSES)).count() > 0

    @property
    def acceptability_status(self):
        total = self.defects.count()
        if total == 0:
            return "acceptable"
        verified = self.defects.filter(Defect.status == "verified").count()
        return "acceptable" if verified == total else "not_acceptable"

    @property
    def item_count(self):
        return self.items.count()

    @property
    def approved_item_count(self):
        return self.items.filter(AcceptanceItem.acceptance_status == "approved").count()

    @property
    def is_completed(self):
        """All checklist items signed off (an empty checklist is not complete)."""
        total = self.item_count
        return total > 0 and self.approved_item_count == total

    @property
    def completion_percentage(self):
        total = self.item_count
        if total == 0:
            return 0.0
        return round(self.approved_item_count / total * 100, 2)

    def to_dict(self, include_items=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "work_item_id": self.work_item_id,
            "name": self.name,
            "description": self.description,
            "sequence": self.sequence,
            "status": self.status,
            "is_auto_created": self.is_auto_created,
            "is_fully_approved": self.is_fully_approved,
            "has_open_defects": self.has_open_defects,
            "acceptability_status": self.acceptability_status,
            "completion_percentage": self.completion_percentage,
            "rejection_reason": self.rejection_reason,
        }
        for step in STAGE_STEPS:
            by = getattr(self, f"{step}_approved_by")
            at = getattr(self, f"{step}_approved_at")
            d[f"{step}_approved_by"] = by
            d[f"{step}_approved_at"] = at.isoformat() if at else None
        if include_items:
            d["items"] = [i.to_dict() for i in self.items]
        return d

    def __repr__(self):
        return f"<AcceptanceStage {self.id}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# AcceptanceItem
# ═════════════════════════════════════════════════════════════════════════════


class AcceptanceItem(db.Model):
    """
    Checklist entry within a stage.

    ``workflow_status`` follows the role chain; ``acceptance_status`` tracks
    the sign-off itself and is what stage completion is measured on.
    """

    __tablename__ = "acceptance_items"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer, db.ForeignKey("acceptance_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    template_id = db.Column(db.Integer, nullable=True, comment="Checklist template reference")
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    acceptance_status = db.Column(
        db.String(20), nullable=False, default="not_started",
        comment="not_started | pending | approved | rejected",
    )
    approved_by = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.Text, nullable=True)

    workflow_status = db.Column(
        db.String(30), nullable=False, default="draft",
        comment="draft | submitted | supervisor_approved | project_manager_approved"
                " | customer_approved | rejected",
    )
    submitted_by = db.Column(db.Integer, nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    supervisor_approved_by = db.Column(db.Integer, nullable=True)
    supervisor_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    project_manager_approved_by = db.Column(db.Integer, nullable=True)
    project_manager_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    customer_approved_by = db.Column(db.Integer, nullable=True)
    customer_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rejected_by = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def is_completed(self):
        """Site work for the item is over once its end date is reached."""
        return self.end_date is not None and date.today() >= self.end_date

    @property
    def can_accept(self):
        return self.is_completed and self.acceptance_status == "pending"

    def refresh_acceptance_status(self):
        """Move not_started → pending once the end date has passed."""
        if self.acceptance_status in (None, "not_started") and self.is_completed:
            self.acceptance_status = "pending"
        return self.acceptance_status

    def to_dict(self):
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "work_item_id": self.work_item_id,
            "template_id": self.template_id,
            "name": self.name,
            "description": self.description,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "sort_order": self.sort_order,
            "is_default": self.is_default,
            "acceptance_status": self.acceptance_status,
            "workflow_status": self.workflow_status,
            "can_accept": self.can_accept,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "approval_notes": self.approval_notes,
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
        }

    def __repr__(self):
        return f"<AcceptanceItem {self.id}: {self.name} [{self.acceptance_status}/{self.workflow_status}]>"


# ── Auto-pending on every save ───────────────────────────────────────────────

@event.listens_for(AcceptanceItem, "before_insert")
@event.listens_for(AcceptanceItem, "before_update")
def _auto_pending(mapper, connection, target):
    target.refresh_acceptance_status()
