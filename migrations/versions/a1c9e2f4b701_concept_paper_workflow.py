"""Concept paper workflow: users, papers, stages, deadline options, audit, attachments

Revision ID: a1c9e2f4b701
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "a1c9e2f4b701"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(200), nullable=False, unique=True),
        sa.Column("role", sa.String(30), nullable=False, server_default="requisitioner"),
        sa.Column("department", sa.String(150)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_role_active", "users", ["role", "is_active"])

    op.create_table(
        "deadline_options",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(50), nullable=False, unique=True),
        sa.Column("label", sa.String(100), nullable=False),
        sa.Column("hours", sa.Integer()),
        sa.Column("days", sa.Numeric(8, 3)),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "concept_papers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tracking_number", sa.String(30), nullable=False, unique=True),
        sa.Column("requisitioner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), index=True),
        sa.Column("department", sa.String(255), nullable=False),
        sa.Column("title", sa.String(1000), nullable=False),
        sa.Column("nature_of_request", sa.String(20), nullable=False, server_default="regular"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("current_stage_id", sa.Integer()),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("students_involved", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deadline_option", sa.String(50)),
        sa.Column("deadline_date", sa.DateTime(timezone=True)),
        sa.Column("deleted_at", sa.DateTime(timezone=True), index=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "workflow_stages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("concept_paper_id", sa.Integer(), sa.ForeignKey("concept_papers.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("stage_name", sa.String(100), nullable=False),
        sa.Column("stage_order", sa.Integer(), nullable=False),
        sa.Column("assigned_role", sa.String(30), nullable=False, index=True),
        sa.Column("assigned_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("deadline_option", sa.String(50), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("remarks", sa.Text()),
        sa.Column("signature", sa.Text()),
        sa.Column("is_rejected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("rejected_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("concept_paper_id", "stage_order", name="uq_workflow_stage_order"),
        sa.UniqueConstraint("concept_paper_id", "stage_name", name="uq_workflow_stage_name"),
    )
    op.create_index("ix_workflow_stages_status_deadline", "workflow_stages", ["status", "deadline"])

    with op.batch_alter_table("concept_papers") as batch:
        batch.create_foreign_key(
            "fk_concept_papers_current_stage", "workflow_stages",
            ["current_stage_id"], ["id"], ondelete="SET NULL",
        )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("concept_paper_id", sa.Integer(), sa.ForeignKey("concept_papers.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), index=True),
        sa.Column("action", sa.String(40), nullable=False),
        sa.Column("stage_name", sa.String(100)),
        sa.Column("remarks", sa.Text()),
        sa.Column("metadata_json", sa.Text(), server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_audit_paper_created", "audit_logs", ["concept_paper_id", "created_at"])
    op.create_index("idx_audit_action", "audit_logs", ["action"])

    op.create_table(
        "attachments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("concept_paper_id", sa.Integer(), sa.ForeignKey("concept_papers.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("workflow_stage_id", sa.Integer(), sa.ForeignKey("workflow_stages.id", ondelete="SET NULL")),
        sa.Column("original_name", sa.String(255), nullable=False),
        sa.Column("file_path", sa.String(500), nullable=False),
        sa.Column("uploaded_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("concept_paper_id", sa.Integer(), sa.ForeignKey("concept_papers.id", ondelete="CASCADE"), index=True),
        sa.Column("recipient_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), index=True),
        sa.Column("recipient_role", sa.String(30), index=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), server_default=""),
        sa.Column("category", sa.String(30), server_default="system"),
        sa.Column("severity", sa.String(20), server_default="info"),
        sa.Column("entity_type", sa.String(30), server_default=""),
        sa.Column("entity_id", sa.Integer()),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_entity", "notifications", ["entity_type", "entity_id"])

    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.String(500), server_default=""),
        sa.Column("schedule_type", sa.String(30), server_default="interval"),
        sa.Column("schedule_config", sa.JSON()),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("is_enabled", sa.Boolean(), server_default=sa.true()),
        sa.Column("last_run_at", sa.DateTime(timezone=True)),
        sa.Column("last_run_status", sa.String(20)),
        sa.Column("last_run_duration_ms", sa.Integer()),
        sa.Column("last_run_result", sa.JSON()),
        sa.Column("run_count", sa.Integer(), server_default="0"),
        sa.Column("error_count", sa.Integer(), server_default="0"),
        sa.Column("last_error", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table("scheduled_jobs")
    op.drop_index("ix_notifications_entity", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("attachments")
    op.drop_index("idx_audit_action", table_name="audit_logs")
    op.drop_index("idx_audit_paper_created", table_name="audit_logs")
    op.drop_table("audit_logs")
    with op.batch_alter_table("concept_papers") as batch:
        batch.drop_constraint("fk_concept_papers_current_stage", type_="foreignkey")
    op.drop_index("ix_workflow_stages_status_deadline", table_name="workflow_stages")
    op.drop_table("workflow_stages")
    op.drop_table("concept_papers")
    op.drop_table("deadline_options")
    op.drop_index("ix_users_role_active", table_name="users")
    op.drop_table("users")
