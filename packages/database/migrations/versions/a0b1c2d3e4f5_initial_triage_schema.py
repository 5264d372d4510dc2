"""initial triage schema

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "a0b1c2d3e4f5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = False, server_now: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.func.now() if server_now else None,
        nullable=nullable,
    )


def upgrade() -> None:
    """
    1. public: users, linked_accounts, access_tokens
    2. inbox: tracked_repository, issue, triage_state, sync_log
    """
    op.execute("CREATE SCHEMA IF NOT EXISTS inbox")

    # 1. Identity
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("avatar_url", sa.String(), nullable=True),
        _timestamp("created_at"),
        schema="public",
    )
    op.create_index("ix_public_users_email", "users", ["email"], unique=True, schema="public")

    op.create_table(
        "linked_accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(),
            sa.ForeignKey("public.users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("provider_user_id", sa.String(length=255), nullable=False),
        sa.Column("access_token", sa.String(), nullable=False),
        sa.Column("refresh_token", sa.String(), nullable=True),
        sa.Column("scopes", postgresql.ARRAY(sa.String()), server_default="{}", nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        _timestamp("created_at"),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("user_id", "provider", name="uq_linked_accounts_user_provider"),
        schema="public",
    )
    op.create_index("ix_public_linked_accounts_user_id", "linked_accounts", ["user_id"], schema="public")
    op.create_index("ix_public_linked_accounts_provider", "linked_accounts", ["provider"], schema="public")

    op.create_table(
        "access_tokens",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(),
            sa.ForeignKey("public.users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("label", sa.String(length=100), nullable=True),
        _timestamp("created_at"),
        schema="public",
    )
    op.create_index("ix_public_access_tokens_user_id", "access_tokens", ["user_id"], schema="public")
    op.create_index("ix_public_access_tokens_provider", "access_tokens", ["provider"], schema="public")

    # 2. Inbox
    op.create_table(
        "tracked_repository",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(),
            sa.ForeignKey("public.users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("owner", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("permission", sa.String(), server_default="read", nullable=False),
        sa.Column("sync_enabled", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("sync_mode", sa.String(), server_default="live", nullable=False),
        _timestamp("last_synced_at", nullable=True, server_now=False),
        _timestamp("created_at"),
        sa.UniqueConstraint(
            "user_id", "provider", "full_name", name="uq_tracked_repository_user_provider_name"
        ),
        schema="inbox",
    )
    op.create_index("ix_inbox_tracked_repository_user_id", "tracked_repository", ["user_id"], schema="inbox")

    op.create_table(
        "issue",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "repo_id", sa.Uuid(),
            sa.ForeignKey("inbox.tracked_repository.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("provider_issue_id", sa.String(), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("body", sa.String(), nullable=True),
        sa.Column("author", sa.String(), nullable=True),
        sa.Column("author_avatar", sa.String(), nullable=True),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("labels", postgresql.ARRAY(sa.String()), server_default="{}", nullable=False),
        sa.Column("assignees", postgresql.ARRAY(sa.String()), server_default="{}", nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        _timestamp("created_at", server_now=False),
        _timestamp("updated_at", server_now=False),
        _timestamp("fetched_at"),
        sa.UniqueConstraint("repo_id", "provider_issue_id", name="uq_issue_repo_provider_issue"),
        schema="inbox",
    )
    op.create_index("ix_inbox_issue_repo_id", "issue", ["repo_id"], schema="inbox")
    op.create_index("ix_inbox_issue_state", "issue", ["state"], schema="inbox")
    op.create_index("ix_issue_repo_updated", "issue", ["repo_id", "updated_at"], schema="inbox")

    op.create_table(
        "triage_state",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "issue_id", sa.Uuid(),
            sa.ForeignKey("inbox.issue.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.Uuid(),
            sa.ForeignKey("public.users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("priority", sa.Integer(), nullable=True),
        _timestamp("snoozed_until", nullable=True, server_now=False),
        sa.Column("dismissed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("batch_pending", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("pending_changes", postgresql.JSONB(), server_default="{}", nullable=False),
        _timestamp("updated_at"),
        sa.UniqueConstraint("issue_id", "user_id", name="uq_triage_state_issue_user"),
        sa.CheckConstraint("priority BETWEEN 0 AND 3", name="ck_triage_state_priority_range"),
        schema="inbox",
    )
    op.create_index("ix_inbox_triage_state_issue_id", "triage_state", ["issue_id"], schema="inbox")
    op.create_index("ix_inbox_triage_state_user_id", "triage_state", ["user_id"], schema="inbox")
    op.create_index(
        "ix_triage_state_user_pending", "triage_state", ["user_id", "batch_pending"], schema="inbox"
    )

    op.create_table(
        "sync_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "repo_id", sa.Uuid(),
            sa.ForeignKey("inbox.tracked_repository.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("issues_fetched", sa.Integer(), nullable=False),
        sa.Column("error", sa.String(), nullable=True),
        _timestamp("started_at"),
        _timestamp("completed_at", nullable=True, server_now=False),
        schema="inbox",
    )
    op.create_index("ix_inbox_sync_log_repo_id", "sync_log", ["repo_id"], schema="inbox")


def downgrade() -> None:
    op.drop_table("sync_log", schema="inbox")
    op.drop_table("triage_state", schema="inbox")
    op.drop_table("issue", schema="inbox")
    op.drop_table("tracked_repository", schema="inbox")
    op.drop_table("access_tokens", schema="public")
    op.drop_table("linked_accounts", schema="public")
    op.drop_table("users", schema="public")
    op.execute("DROP SCHEMA IF EXISTS inbox")
