from datetime import UTC, datetime
from typing import TYPE_CHECKING, List, Optional
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from .identity import User


class TrackedRepository(SQLModel, table=True):
    """One origin-system project a user has opted into"""
    __tablename__ = "tracked_repository"
    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "provider", "full_name", name="uq_tracked_repository_user_provider_name"
        ),
        {"schema": "inbox"},
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(
        sa_column=sa.Column(
            sa.Uuid,
            sa.ForeignKey("public.users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )

    # Provider tag selected once at connect time: github | gitlab
    provider: str = Field(max_length=20)
    owner: str
    name: str
    full_name: str

    # Advisory only: admin | write | read
    permission: str = Field(
        default="read",
        sa_column=sa.Column(sa.String, server_default="read", nullable=False),
    )
    sync_enabled: bool = Field(
        default=True,
        sa_column=sa.Column(sa.Boolean, server_default=sa.true(), nullable=False),
    )
    # live | batch
    sync_mode: str = Field(
        default="live",
        sa_column=sa.Column(sa.String, server_default="live", nullable=False),
    )

    # Freshness marker; lower bound for incremental pulls
    last_synced_at: Optional[datetime] = Field(
        default=None,
        sa_column=sa.Column(sa.DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=sa.Column(
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    )

    user: "User" = Relationship(back_populates="repositories")
    issues: List["Issue"] = Relationship(
        back_populates="repository",
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "passive_deletes": True},
    )


class Issue(SQLModel, table=True):
    """Provider-agnostic issue. (repo_id, provider_issue_id) is the upsert key."""
    __table_args__ = (
        sa.UniqueConstraint("repo_id", "provider_issue_id", name="uq_issue_repo_provider_issue"),
        sa.Index("ix_issue_repo_updated", "repo_id", "updated_at"),
        {"schema": "inbox"},
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    repo_id: UUID = Field(
        sa_column=sa.Column(
            sa.Uuid,
            sa.ForeignKey("inbox.tracked_repository.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    provider: str = Field(max_length=20)

    # Opaque, provider-assigned, immutable
    provider_issue_id: str
    # User-visible sequence number; only unique within the repository
    number: int

    title: str
    body: Optional[str] = Field(default=None)
    author: Optional[str] = Field(default=None)
    author_avatar: Optional[str] = Field(default=None)

    # open | closed
    state: str = Field(default="open", index=True)
    labels: List[str] = Field(
        default_factory=list,
        sa_column=Column(ARRAY(sa.String), server_default="{}", nullable=False),
    )
    assignees: List[str] = Field(
        default_factory=list,
        sa_column=Column(ARRAY(sa.String), server_default="{}", nullable=False),
    )
    url: str

    created_at: datetime = Field(sa_column=sa.Column(sa.DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=sa.Column(sa.DateTime(timezone=True), nullable=False))
    fetched_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=sa.Column(
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    )

    repository: TrackedRepository = Relationship(back_populates="issues")
