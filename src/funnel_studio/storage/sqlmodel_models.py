"""SQLModel ORM tables for job and task storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

DEFAULT_USER_ID = "default_user"


class AppUser(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[bad-override]

    user_id: str = Field(primary_key=True, index=True)
    display_name: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class GenerationJob(SQLModel, table=True):
    __tablename__ = "generation_jobs"  # type: ignore[bad-override]

    job_id: str = Field(primary_key=True)
    user_id: str = Field(
        default=DEFAULT_USER_ID,
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            server_default=DEFAULT_USER_ID,
            index=True,
        ),
    )
    job_kind: str = Field(index=True)
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    test_mode: bool = False
    request_json: str = Field(sa_column=Column(Text, nullable=False))
    retry_policy_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class GenerationTask(SQLModel, table=True):
    __tablename__ = "generation_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("job_id", "sequence", name="uq_generation_tasks_job_sequence"),
        Index("idx_generation_tasks_job_status", "job_id", "status"),
    )

    task_id: str = Field(primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("generation_jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    sequence: int
    task_kind: str = Field(index=True)
    category: str
    variation: int = 1
    position: int | None = None
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    attempt_count: int = 0
    max_attempts: int = 7
    manual_retry_count: int = 0
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    failure_class: str | None = Field(default=None, index=True)
    last_attempt_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    next_attempt_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    fallback_fields: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class GenerationTaskEvent(SQLModel, table=True):
    __tablename__ = "generation_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_generation_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("generation_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    job_id: str = Field(index=True)
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AppSetting(SQLModel, table=True):
    __tablename__ = "app_settings"  # type: ignore[bad-override]

    key: str = Field(primary_key=True)
    value: str
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
