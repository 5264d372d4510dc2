from datetime import UTC, datetime
from typing import TYPE_CHECKING, List, Optional
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from .tracking import TrackedRepository


class User(SQLModel, table=True):
    """Already-authenticated identity handed to the engine by the upstream auth layer"""
    __tablename__ = "users"
    __table_args__ = {"schema": "public"}

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: Optional[str] = Field(default=None, unique=True, index=True)
    display_name: Optional[str] = Field(default=None)
    avatar_url: Optional[str] = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=sa.Column(
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    )

    linked_accounts: List["LinkedAccount"] = Relationship(back_populates="user")
    access_tokens: List["AccessToken"] = Relationship(back_populates="user")
    repositories: List["TrackedRepository"] = Relationship(back_populates="user")


class LinkedAccount(SQLModel, table=True):
    """OAuth-issued provider tokens. Preferred over personal tokens during resolution."""
    __tablename__ = "linked_accounts"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "provider", name="uq_linked_accounts_user_provider"),
        {"schema": "public"},
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
    provider: str = Field(max_length=20, index=True)
    provider_user_id: str = Field(max_length=255)

    # Encrypted at application level via Fernet
    access_token: str
    refresh_token: Optional[str] = Field(default=None)
    scopes: List[str] = Field(
        default_factory=list,
        sa_column=Column(ARRAY(sa.String), server_default="{}", nullable=False)
    )
    expires_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=sa.Column(
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    )
    # Null if active
    revoked_at: Optional[datetime] = Field(default=None)

    user: User = Relationship(back_populates="linked_accounts")


class AccessToken(SQLModel, table=True):
    """Personal access token registered by the user; fallback when no OAuth account exists"""
    __tablename__ = "access_tokens"
    __table_args__ = {"schema": "public"}

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(
        sa_column=sa.Column(
            sa.Uuid,
            sa.ForeignKey("public.users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    provider: str = Field(max_length=20, index=True)
    # Encrypted at application level via Fernet
    token: str
    label: Optional[str] = Field(default=None, max_length=100)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=sa.Column(
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    )

    user: User = Relationship(back_populates="access_tokens")
