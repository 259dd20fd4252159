"""
Work breakdown models.

Models:
    - WorkItem:          node of the project task tree (root nodes are "phases")
    - DailyProgressLog:  dated completion assertion for one work item

The tree is stored as rows keyed by id with an explicit ``parent_id``; there
is no ORM parent/children relationship. Children are read back by query and
indexed per call (see ``services.work_item_service.build_tree``).

``completion_percentage`` and ``status`` are system-owned. The only writer is
``services.progress_aggregator.apply_derived``.
"""

from datetime import datetime, timezone

from sitetrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

WORK_ITEM_STATUSES = {"not_started", "in_progress", "delayed", "completed"}

# Fields a caller may never write through the edit path
SYSTEM_OWNED_FIELDS = frozenset({"completion_percentage", "status"})


def validate_no_cycle(session, item_id, new_parent_id):
    """
    Check that making ``new_parent_id`` the parent of ``item_id`` keeps the
    tree acyclic.

    Walks up the ancestor chain of the proposed parent. Returns True if safe,
    False if ``item_id`` is reached (or the chain already loops).
    """
    if new_parent_id is None:
        return True
    if item_id is not None and item_id == new_parent_id:
        return False

    visited = set()
    current = new_parent_id
    while current is not None:
        if current == item_id:
            return False
        if current in visited:
            return False
        visited.add(current)
        current = session.query(WorkItem.parent_id).filter(WorkItem.id == current).scalar()
    return True


class WorkItem(db.Model):
    """
    Hierarchical task node.

    Leaf percentage comes from its latest DailyProgressLog; a parent's
    percentage is the mean of its direct children.
    """

    __tablename__ = "work_items"
    __table_args__ = (
        db.Index("idx_work_items_project_parent", "project_id", "parent_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    parent_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="RESTRICT"), nullable=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")

    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    duration = db.Column(db.Integer, nullable=True, comment="Planned duration in calendar days")

    # System-owned (progress aggregator only)
    completion_percentage = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(
        db.String(20), nullable=False, default="not_started",
        comment="not_started | in_progress | delayed | completed",
    )

    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def is_root(self):
        return self.parent_id is None

    def to_dict(self, include_children=False, children=None):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "parent_id": self.parent_id,
            "name": self.name,
            "description": self.description,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "duration": self.duration,
            "completion_percentage": self.completion_percentage,
            "status": self.status,
            "sort_order": self.sort_order,
        }
        if include_children:
            d["children"] = children or []
        return d

    def __repr__(self):
        return f"<WorkItem {self.id}: {self.name} {self.completion_percentage}% [{self.status}]>"


class DailyProgressLog(db.Model):
    """One completion reading per work item per day."""

    __tablename__ = "daily_progress_logs"
    __table_args__ = (
        db.UniqueConstraint("project_id", "work_item_id", "log_date", name="uq_daily_log_item_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    log_date = db.Column(db.Date, nullable=False)
    completion_percentage = db.Column(db.Float, nullable=False, default=0.0)
    author_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "work_item_id": self.work_item_id,
            "log_date": self.log_date.isoformat() if self.log_date else None,
            "completion_percentage": self.completion_percentage,
            "author_id": self.author_id,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<DailyProgressLog {self.id}: item#{self.work_item_id} {self.log_date} {self.completion_percentage}%>"
