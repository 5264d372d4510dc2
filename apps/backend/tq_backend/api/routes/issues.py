"""API routes for the inbox issue list and triage writes."""
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession

from tq_backend.api.dependencies import get_db
from tq_backend.middleware.auth import require_user_id
from tq_backend.services.issue_service import IssueStateFilter, IssueView, list_issues
from tq_backend.services.pending_changes import PendingChanges
from tq_backend.services.triage_service import TriageResult, apply_triage

router = APIRouter()


# Request Models

class TriageRequest(PendingChanges):
    """Triage payload plus an explicit request to stage it for the next batch push."""
    batch: bool = False


# Endpoints

@router.get("", response_model=list[IssueView])
async def list_issues_endpoint(
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
    repo_id: Annotated[UUID | None, Query(description="Restrict to one repository")] = None,
    state: Annotated[IssueStateFilter, Query()] = "open",
) -> list[IssueView]:
    """Issues from the caller's repositories with their triage state, newest update first."""
    return await list_issues(db, user_id, repo_id=repo_id, state=state)


@router.patch("/{issue_id}", response_model=TriageResult)
async def triage_issue_endpoint(
    issue_id: UUID,
    body: TriageRequest,
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> TriageResult:
    payload = PendingChanges.model_validate(body.model_dump(exclude_unset=True, exclude={"batch"}))
    return await apply_triage(db, user_id, issue_id, payload, batch=body.batch)
