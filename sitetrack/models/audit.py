"""
Audit model.

Models:
    - AuditLog: append-only trail of acceptance and progress events.
"""

import json
from datetime import UTC, datetime

from sitetrack.models import db


AUDIT_ENTITY_TYPES = {
    "work_item", "daily_log", "acceptance_stage", "acceptance_item", "project_progress",
}


class AuditLog(db.Model):
    """
    One row per action.  ``diff_json`` carries the old→new snapshot.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True,
    )
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(
        db.String(60), nullable=False,
        comment="acceptance_stage.approve_owner | acceptance_item.reject | …",
    )
    actor_id = db.Column(db.Integer, nullable=True, comment="Null for system-driven actions")
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    project_id: int | None = None,
    actor_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.
    """
    log = AuditLog(
        project_id=project_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_id=actor_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
