"""
Defect domain models.

Models:
    - Defect:         quality issue raised on site, manually or by a rejection
    - DefectHistory:  append-only lifecycle trail (never updated, never deleted)

Lifecycle:
    open ──▶ in_progress ──▶ fixed ──▶ verified
      └──────────────────────▲   │
                   in_progress ◀─┘  (fix not accepted on inspection)
"""

from datetime import datetime, timezone

from sqlalchemy import event

from sitetrack.core.exceptions import ImmutableRecordError
from sitetrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

DEFECT_SEVERITIES = {"low", "medium", "high", "critical"}
DEFECT_STATUSES = {"open", "in_progress", "fixed", "verified"}

# Anything short of verified still blocks acceptance
UNRESOLVED_DEFECT_STATUSES = ("open", "in_progress", "fixed")
# Work not yet handed back for inspection
OPEN_DEFECT_STATUSES = ("open", "in_progress")

DEFECT_TRANSITIONS = {
    "open":        ["in_progress", "fixed"],
    "in_progress": ["fixed"],
    "fixed":       ["verified", "in_progress"],
    "verified":    [],
}

HISTORY_ACTIONS = {"created", "status_changed"}


def validate_defect_transition(old_status, new_status):
    """Return True if transition is valid, False otherwise."""
    allowed = DEFECT_TRANSITIONS.get(old_status, [])
    return new_status in allowed


class Defect(db.Model):
    """
    Quality issue owned by a project.

    Optionally linked to the acceptance stage / item that raised it and to
    the work item it affects.
    """

    __tablename__ = "defects"
    __table_args__ = (
        db.Index("idx_defects_stage_status", "stage_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage_id = db.Column(
        db.Integer, db.ForeignKey("acceptance_stages.id", ondelete="SET NULL"), nullable=True,
    )
    acceptance_item_id = db.Column(
        db.Integer, db.ForeignKey("acceptance_items.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    description = db.Column(db.Text, nullable=False)
    location = db.Column(db.String(200), default="")
    severity = db.Column(
        db.String(10), nullable=False, default="medium",
        comment="low | medium | high | critical",
    )
    status = db.Column(
        db.String(20), nullable=False, default="open",
        comment="open | in_progress | fixed | verified",
    )

    reported_by = db.Column(db.Integer, nullable=True)
    fixed_by = db.Column(db.Integer, nullable=True)
    verified_by = db.Column(db.Integer, nullable=True)
    reported_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    fixed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    stage = db.relationship(
        "AcceptanceStage", backref=db.backref("defects", lazy="dynamic"),
    )
    history = db.relationship(
        "DefectHistory", backref="defect", lazy="dynamic",
        order_by="DefectHistory.id",
    )

    @property
    def is_resolved(self):
        return self.status == "verified"

    def to_dict(self, include_history=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "stage_id": self.stage_id,
            "acceptance_item_id": self.acceptance_item_id,
            "work_item_id": self.work_item_id,
            "description": self.description,
            "location": self.location,
            "severity": self.severity,
            "status": self.status,
            "reported_by": self.reported_by,
            "fixed_by": self.fixed_by,
            "verified_by": self.verified_by,
            "reported_at": self.reported_at.isoformat() if self.reported_at else None,
            "fixed_at": self.fixed_at.isoformat() if self.fixed_at else None,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
        }
        if include_history:
            d["history"] = [h.to_dict() for h in self.history]
        return d

    def __repr__(self):
        return f"<Defect {self.id}: [{self.severity}] {self.status}>"


class DefectHistory(db.Model):
    """Append-only lifecycle trail for a defect."""

    __tablename__ = "defect_history"

    id = db.Column(db.Integer, primary_key=True)
    defect_id = db.Column(
        db.Integer, db.ForeignKey("defects.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    action = db.Column(db.String(30), nullable=False, comment="created | status_changed")
    old_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.Text, default="")
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "defect_id": self.defect_id,
            "action": self.action,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "actor_id": self.actor_id,
            "note": self.note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<DefectHistory {self.id}: defect#{self.defect_id} {self.action}>"


# ── Append-only enforcement ──────────────────────────────────────────────────

@event.listens_for(DefectHistory, "before_update")
def _refuse_history_update(mapper, connection, target):
    raise ImmutableRecordError("DefectHistory", target.id, "update")


@event.listens_for(DefectHistory, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise ImmutableRecordError("DefectHistory", target.id, "delete")
