"""SQLModel ORM tables for jobs and the step ledger."""

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


class JobRecord(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_jobs_scope_status_created", "user_id", "status", "created_at"),)

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
    goal: str = Field(sa_column=Column(Text, nullable=False))
    acceptance_criteria_json: str = Field(sa_column=Column(Text, nullable=False))
    tech_stack_json: str = Field(sa_column=Column(Text, nullable=False))
    time_budget_hours: float = Field(default=5.0)
    autopilot_policy: str = Field(default="standard")
    repository: str
    default_branch: str = Field(default="main")
    status: str = Field(index=True)
    branch_name: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    failed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    execution_summary_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class JobStepRecord(SQLModel, table=True):
    __tablename__ = "job_steps"  # type: ignore[bad-override]
    __table_args__ = (UniqueConstraint("job_id", "step_order", name="uq_job_steps_job_order"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    step_type: str = Field(index=True)
    step_order: int
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
