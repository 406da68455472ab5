"""Initial schema: users, generation jobs, tasks, and task audit events."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_users_user_id", "users", ["user_id"])
    op.create_index("ix_users_display_name", "users", ["display_name"])

    op.create_table(
        "generation_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), server_default="default_user", nullable=False),
        sa.Column("job_kind", sa.String(), nullable=False),
        sa.Column("total_tasks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_tasks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_tasks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("test_mode", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("request_json", sa.Text(), nullable=False),
        sa.Column("retry_policy_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_generation_jobs_user_id", "generation_jobs", ["user_id"])
    op.create_index("ix_generation_jobs_job_kind", "generation_jobs", ["job_kind"])

    op.create_table(
        "generation_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("task_kind", sa.String(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("variation", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("manual_retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("result_json", sa.Text(), nullable=True),
        sa.Column("fallback_fields", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["job_id"], ["generation_jobs.job_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("task_id"),
        sa.UniqueConstraint("job_id", "sequence", name="uq_generation_tasks_job_sequence"),
    )
    op.create_index("ix_generation_tasks_job_id", "generation_tasks", ["job_id"])
    op.create_index("ix_generation_tasks_task_kind", "generation_tasks", ["task_kind"])
    op.create_index("ix_generation_tasks_status", "generation_tasks", ["status"])
    op.create_index("ix_generation_tasks_failure_class", "generation_tasks", ["failure_class"])
    op.create_index(
        "idx_generation_tasks_job_status",
        "generation_tasks",
        ["job_id", "status"],
    )

    op.create_table(
        "generation_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["generation_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_task_events_task_id", "generation_task_events", ["task_id"])
    op.create_index("ix_generation_task_events_job_id", "generation_task_events", ["job_id"])
    op.create_index(
        "ix_generation_task_events_event_type",
        "generation_task_events",
        ["event_type"],
    )
    op.create_index(
        "idx_generation_task_events_task_time",
        "generation_task_events",
        ["task_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_generation_task_events_task_time", table_name="generation_task_events")
    op.drop_index("ix_generation_task_events_event_type", table_name="generation_task_events")
    op.drop_index("ix_generation_task_events_job_id", table_name="generation_task_events")
    op.drop_index("ix_generation_task_events_task_id", table_name="generation_task_events")
    op.drop_table("generation_task_events")
    op.drop_index("idx_generation_tasks_job_status", table_name="generation_tasks")
    op.drop_index("ix_generation_tasks_failure_class", table_name="generation_tasks")
    op.drop_index("ix_generation_tasks_status", table_name="generation_tasks")
    op.drop_index("ix_generation_tasks_task_kind", table_name="generation_tasks")
    op.drop_index("ix_generation_tasks_job_id", table_name="generation_tasks")
    op.drop_table("generation_tasks")
    op.drop_index("ix_generation_jobs_job_kind", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_user_id", table_name="generation_jobs")
    op.drop_table("generation_jobs")
    op.drop_index("ix_users_display_name", table_name="users")
    op.drop_index("ix_users_user_id", table_name="users")
    op.drop_table("users")
