"""
Project domain models.

Models:
    - Project:          construction project; owns work items, stages, defects
    - Subcontractor:    quoted trade package; feeds the subcontractor-weighted signal
    - ProjectProgress:  1:1 satellite of Project holding the reconciled percentage
"""

from datetime import datetime, timezone

from sitetrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = {"planning", "in_progress", "on_hold", "completed", "cancelled"}

SUBCONTRACTOR_STATUSES = {"not_started", "in_progress", "delayed", "completed"}

# Share of a subcontract considered delivered for each reported status
SUBCONTRACTOR_STATUS_WEIGHT = {
    "completed": 100.0,
    "in_progress": 50.0,
    "delayed": 25.0,
    "not_started": 0.0,
}

CALCULATION_SOURCES = {"logs", "subcontractors", "manual", "acceptance", "mixed"}


class Project(db.Model):
    """Construction project. Every engine record is scoped to one project."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(30), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(
        db.String(20), nullable=False, default="planning",
        comment="planning | in_progress | on_hold | completed | cancelled",
    )
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    # Identity provider ids; this service only records them
    project_manager_id = db.Column(db.Integer, nullable=True)
    customer_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "project_manager_id": self.project_manager_id,
            "customer_id": self.customer_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.code}>"


class Subcontractor(db.Model):
    """Trade package with a quote and a coarse progress status."""

    __tablename__ = "subcontractors"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    trade = db.Column(db.String(100), default="")
    total_quote = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    progress_status = db.Column(
        db.String(20), nullable=False, default="not_started",
        comment="not_started | in_progress | delayed | completed",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "trade": self.trade,
            "total_quote": float(self.total_quote or 0),
            "progress_status": self.progress_status,
        }

    def __repr__(self):
        return f"<Subcontractor {self.id}: {self.name} [{self.progress_status}]>"


class ProjectProgress(db.Model):
    """
    Reconciled project percentage.

    Created lazily at 0% the first time anything asks for it.
    ``manual_percentage`` is the stored override; it only becomes the overall
    value when no other source has data.
    """

    __tablename__ = "project_progress"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    overall_percentage = db.Column(db.Float, nullable=False, default=0.0)
    calculated_from = db.Column(
        db.String(20), nullable=False, default="logs",
        comment="logs | subcontractors | manual | acceptance | mixed",
    )
    manual_percentage = db.Column(db.Float, nullable=True)
    last_calculated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "project_id": self.project_id,
            "overall_percentage": self.overall_percentage,
            "calculated_from": self.calculated_from,
            "manual_percentage": self.manual_percentage,
            "last_calculated_at": self.last_calculated_at.isoformat() if self.last_calculated_at else None,
        }

    def __repr__(self):
        return f"<ProjectProgress project#{self.project_id}: {self.overall_percentage}% ({self.calculated_from})>"
