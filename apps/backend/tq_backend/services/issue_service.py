"""Read side of the inbox: issues joined with the caller's triage overlay"""
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import and_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from tq_database.models.tracking import Issue, TrackedRepository
from tq_database.models.triage import TriageState

IssueStateFilter = Literal["open", "closed", "all"]


class TriageOverlay(BaseModel):
    priority: int | None
    snoozed_until: datetime | None
    dismissed: bool
    batch_pending: bool
    pending_changes: dict


class IssueView(BaseModel):
    """Normalized issue plus the owning repository and the user's triage state"""
    id: UUID
    repo_id: UUID
    repo_full_name: str
    provider: str
    sync_mode: str
    number: int
    title: str
    body: str | None
    author: str | None
    author_avatar: str | None
    state: str
    labels: list[str]
    assignees: list[str]
    url: str
    created_at: datetime
    updated_at: datetime
    triage: TriageOverlay | None


def _to_view(issue: Issue, repo: TrackedRepository, triage: TriageState | None) -> IssueView:
    return IssueView(
        id=issue.id,
        repo_id=issue.repo_id,
        repo_full_name=repo.full_name,
        provider=issue.provider,
        sync_mode=repo.sync_mode,
        number=issue.number,
        title=issue.title,
        body=issue.body,
        author=issue.author,
        author_avatar=issue.author_avatar,
        state=issue.state,
        labels=list(issue.labels or []),
        assignees=list(issue.assignees or []),
        url=issue.url,
        created_at=issue.created_at,
        updated_at=issue.updated_at,
        triage=TriageOverlay(
            priority=triage.priority,
            snoozed_until=triage.snoozed_until,
            dismissed=triage.dismissed,
            batch_pending=triage.batch_pending,
            pending_changes=triage.pending_changes or {},
        ) if triage is not None else None,
    )


async def list_issues(
    db: AsyncSession,
    user_id: UUID,
    repo_id: UUID | None = None,
    state: IssueStateFilter = "open",
) -> list[IssueView]:
    """
    Issues from the user's repositories, most recently updated first.
    A repo_id the user does not own yields an empty list.
    """
    statement = (
        select(Issue, TrackedRepository, TriageState)
        .join(TrackedRepository, Issue.repo_id == TrackedRepository.id)
        .outerjoin(
            TriageState,
            and_(TriageState.issue_id == Issue.id, TriageState.user_id == user_id),
        )
        .where(TrackedRepository.user_id == user_id)
        .order_by(Issue.updated_at.desc())
    )
    if repo_id is not None:
        statement = statement.where(Issue.repo_id == repo_id)
    if state != "all":
        statement = statement.where(Issue.state == state)

    result = await db.exec(statement)
    return [_to_view(issue, repo, triage) for issue, repo, triage in result.all()]


async def get_owned_issue(
    db: AsyncSession, user_id: UUID, issue_id: UUID
) -> tuple[Issue, TrackedRepository] | None:
    """The issue and its repository, only when the repository belongs to the user"""
    result = await db.exec(
        select(Issue, TrackedRepository)
        .join(TrackedRepository, Issue.repo_id == TrackedRepository.id)
        .where(Issue.id == issue_id, TrackedRepository.user_id == user_id)
    )
    return result.first()


__all__ = [
    "IssueView",
    "TriageOverlay",
    "list_issues",
    "get_owned_issue",
]
