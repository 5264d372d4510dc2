from datetime import UTC, datetime
from typing import Dict, Optional
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Column, Field, SQLModel


class TriageState(SQLModel, table=True):
    """A user's private overlay on a shared issue"""
    __tablename__ = "triage_state"
    __table_args__ = (
        sa.UniqueConstraint("issue_id", "user_id", name="uq_triage_state_issue_user"),
        sa.Index("ix_triage_state_user_pending", "user_id", "batch_pending"),
        sa.CheckConstraint("priority BETWEEN 0 AND 3", name="ck_triage_state_priority_range"),
        {"schema": "inbox"},
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    issue_id: UUID = Field(
        sa_column=sa.Column(
            sa.Uuid,
            sa.ForeignKey("inbox.issue.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    user_id: UUID = Field(
        sa_column=sa.Column(
            sa.Uuid,
            sa.ForeignKey("public.users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )

    # Local-only fields; never sent upstream
    priority: Optional[int] = Field(default=None, ge=0, le=3)
    snoozed_until: Optional[datetime] = Field(
        default=None,
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=True),
    )
    dismissed: bool = Field(
        default=False,
        sa_column=sa.Column(sa.Boolean, server_default=sa.false(), nullable=False),
    )

    batch_pending: bool = Field(
        default=False,
        sa_column=sa.Column(sa.Boolean, server_default=sa.false(), nullable=False),
    )
    # Accumulated pending-change document; cleared (not deleted) after a push
    pending_changes: Dict = Field(
        default_factory=dict,
        sa_column=Column(JSONB, server_default="{}", nullable=False),
    )

    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=sa.Column(
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    )


class SyncLog(SQLModel, table=True):
    """Append-only audit record; status moves started -> completed|failed exactly once"""
    __tablename__ = "sync_log"
    __table_args__ = {"schema": "inbox"}

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    repo_id: UUID = Field(
        sa_column=sa.Column(
            sa.Uuid,
            sa.ForeignKey("inbox.tracked_repository.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    status: str = Field(default="started", max_length=16)
    issues_fetched: int = Field(default=0)
    error: Optional[str] = Field(default=None)
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=sa.Column(
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=True),
    )
