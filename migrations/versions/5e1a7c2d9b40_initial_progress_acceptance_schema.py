"""initial_progress_acceptance_schema

Create the progress / acceptance / defect schema.

Revision ID: 5e1a7c2d9b40
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5e1a7c2d9b40"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _approvals(*steps):
    cols = []
    for step in steps:
        cols.append(sa.Column(f"{step}_approved_by", sa.Integer(), nullable=True))
        cols.append(sa.Column(f"{step}_approved_at", sa.DateTime(timezone=True), nullable=True))
    return cols


def _rejection():
    return [
        sa.Column("rejected_by", sa.Integer(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=30), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="planning"),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("project_manager_id", sa.Integer(), nullable=True),
            sa.Column("customer_id", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    if "subcontractors" not in existing_tables:
        op.create_table(
            "subcontractors",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("trade", sa.String(length=100), nullable=True),
            sa.Column("total_quote", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("progress_status", sa.String(length=20), nullable=False, server_default="not_started"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_subcontractors_project_id", "subcontractors", ["project_id"])

    if "project_progress" not in existing_tables:
        op.create_table(
            "project_progress",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("overall_percentage", sa.Float(), nullable=False, server_default="0"),
            sa.Column("calculated_from", sa.String(length=20), nullable=False, server_default="logs"),
            sa.Column("manual_percentage", sa.Float(), nullable=True),
            sa.Column("last_calculated_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id"),
        )

    if "work_items" not in existing_tables:
        op.create_table(
            "work_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("duration", sa.Integer(), nullable=True),
            sa.Column("completion_percentage", sa.Float(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="not_started"),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_id"], ["work_items.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_work_items_project_id", "work_items", ["project_id"])
        op.create_index("ix_work_items_parent_id", "work_items", ["parent_id"])
        op.create_index("idx_work_items_project_parent", "work_items", ["project_id", "parent_id"])

    if "daily_progress_logs" not in existing_tables:
        op.create_table(
            "daily_progress_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("work_item_id", sa.Integer(), nullable=False),
            sa.Column("log_date", sa.Date(), nullable=False),
            sa.Column("completion_percentage", sa.Float(), nullable=False, server_default="0"),
            sa.Column("author_id", sa.Integer(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["work_item_id"], ["work_items.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "work_item_id", "log_date", name="uq_daily_log_item_date"),
        )
        op.create_index("ix_daily_progress_logs_project_id", "daily_progress_logs", ["project_id"])
        op.create_index("ix_daily_progress_logs_work_item_id", "daily_progress_logs", ["work_item_id"])

    if "acceptance_stages" not in existing_tables:
        op.create_table(
            "acceptance_stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("work_item_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sequence", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
            sa.Column("is_auto_created", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_approvals("supervisor", "project_manager", "customer", "design", "owner"),
            *_rejection(),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["work_item_id"], ["work_items.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_acceptance_stages_project_id", "acceptance_stages", ["project_id"])
        op.create_index("ix_acceptance_stages_work_item_id", "acceptance_stages", ["work_item_id"])
        op.create_index("idx_acceptance_stages_project_seq", "acceptance_stages", ["project_id", "sequence"])

    if "acceptance_items" not in existing_tables:
        op.create_table(
            "acceptance_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("work_item_id", sa.Integer(), nullable=True),
            sa.Column("template_id", sa.Integer(), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("acceptance_status", sa.String(length=20), nullable=False, server_default="not_started"),
            sa.Column("approved_by", sa.Integer(), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approval_notes", sa.Text(), nullable=True),
            sa.Column("workflow_status", sa.String(length=30), nullable=False, server_default="draft"),
            sa.Column("submitted_by", sa.Integer(), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            *_approvals("supervisor", "project_manager", "customer"),
            *_rejection(),
            *_timestamps(),
            sa.ForeignKeyConstraint(["stage_id"], ["acceptance_stages.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["work_item_id"], ["work_items.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_acceptance_items_stage_id", "acceptance_items", ["stage_id"])
        op.create_index("ix_acceptance_items_work_item_id", "acceptance_items", ["work_item_id"])

    if "defects" not in existing_tables:
        op.create_table(
            "defects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("stage_id", sa.Integer(), nullable=True),
            sa.Column("acceptance_item_id", sa.Integer(), nullable=True),
            sa.Column("work_item_id", sa.Integer(), nullable=True),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("location", sa.String(length=200), nullable=True),
            sa.Column("severity", sa.String(length=10), nullable=False, server_default="medium"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("reported_by", sa.Integer(), nullable=True),
            sa.Column("fixed_by", sa.Integer(), nullable=True),
            sa.Column("verified_by", sa.Integer(), nullable=True),
            sa.Column("reported_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("fixed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["stage_id"], ["acceptance_stages.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["acceptance_item_id"], ["acceptance_items.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["work_item_id"], ["work_items.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_defects_project_id", "defects", ["project_id"])
        op.create_index("ix_defects_acceptance_item_id", "defects", ["acceptance_item_id"])
        op.create_index("ix_defects_work_item_id", "defects", ["work_item_id"])
        op.create_index("idx_defects_stage_status", "defects", ["stage_id", "status"])

    if "defect_history" not in existing_tables:
        op.create_table(
            "defect_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("defect_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(length=30), nullable=False),
            sa.Column("old_status", sa.String(length=20), nullable=True),
            sa.Column("new_status", sa.String(length=20), nullable=True),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["defect_id"], ["defects.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_defect_history_defect_id", "defect_history", ["defect_id"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("recipient", sa.String(length=150), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_project_id", "notifications", ["project_id"])
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_project", "audit_logs", ["project_id"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    for table in (
        "audit_logs",
        "notifications",
        "defect_history",
        "defects",
        "acceptance_items",
        "acceptance_stages",
        "daily_progress_logs",
        "work_items",
        "project_progress",
        "subcontractors",
        "projects",
    ):
        if table in existing_tables:
            op.drop_table(table)
