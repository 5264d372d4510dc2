"""API routes for pulling issues from origin systems."""
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel.ext.asyncio.session import AsyncSession
from tq_shared.constants import SyncStatus

from tq_backend.api.dependencies import get_db
from tq_backend.middleware.auth import require_user_id
from tq_backend.services.repository_service import RepositorySyncStatus, get_sync_status
from tq_backend.services.sync_engine import sync_all_repos, sync_repo

router = APIRouter()


class SyncRequest(BaseModel):
    repo_id: UUID | None = None


class SyncResultResponse(BaseModel):
    repo_id: UUID
    status: SyncStatus
    issues_fetched: int
    error: str | None


class SyncResponse(BaseModel):
    results: list[SyncResultResponse]


@router.post("", response_model=SyncResponse)
async def sync_endpoint(
    user_id: Annotated[UUID, Depends(require_user_id)],
    body: SyncRequest | None = None,
    db: AsyncSession = Depends(get_db),
) -> SyncResponse:
    """
    Syncs one repository when repo_id is given, otherwise every enabled one.
    Per-repository failures are reported in the results, not as an HTTP error.
    """
    if body is not None and body.repo_id is not None:
        results = [await sync_repo(db, body.repo_id, user_id)]
    else:
        results = await sync_all_repos(db, user_id)

    return SyncResponse(
        results=[
            SyncResultResponse(
                repo_id=r.repo_id,
                status=r.status,
                issues_fetched=r.issues_fetched,
                error=r.error,
            )
            for r in results
        ]
    )


@router.get("/status", response_model=list[RepositorySyncStatus])
async def sync_status_endpoint(
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> list[RepositorySyncStatus]:
    return await get_sync_status(db, user_id)
