"""API routes for tracked repository management."""
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlmodel.ext.asyncio.session import AsyncSession
from tq_shared.constants import Permission, ProviderKind, SyncMode

from tq_backend.api.dependencies import get_db
from tq_backend.middleware.auth import require_user_id
from tq_backend.services.repository_service import (
    AvailableRepository,
    connect_repository,
    disconnect_repository,
    fetch_repository_collaborators,
    fetch_repository_labels,
    list_available_repositories,
    list_repositories,
    update_repository,
)

router = APIRouter()


# Request Models

class ConnectRepositoryRequest(BaseModel):
    provider: ProviderKind
    owner: str
    name: str
    sync_mode: SyncMode = SyncMode.LIVE


class UpdateRepositoryRequest(BaseModel):
    sync_mode: SyncMode | None = None
    sync_enabled: bool | None = None


# Response Models

class RepositoryResponse(BaseModel):
    id: UUID
    provider: str
    owner: str
    name: str
    full_name: str
    permission: str
    sync_mode: str
    sync_enabled: bool
    last_synced_at: datetime | None


class LabelResponse(BaseModel):
    name: str
    color: str | None
    description: str | None


class CollaboratorResponse(BaseModel):
    username: str
    avatar: str | None
    permission: Permission


def _to_response(repo) -> RepositoryResponse:
    return RepositoryResponse(
        id=repo.id,
        provider=repo.provider,
        owner=repo.owner,
        name=repo.name,
        full_name=repo.full_name,
        permission=repo.permission,
        sync_mode=repo.sync_mode,
        sync_enabled=repo.sync_enabled,
        last_synced_at=repo.last_synced_at,
    )


# Endpoints

@router.get("", response_model=list[RepositoryResponse])
async def list_repositories_endpoint(
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> list[RepositoryResponse]:
    return [_to_response(repo) for repo in await list_repositories(db, user_id)]


@router.get("/available", response_model=list[AvailableRepository])
async def list_available_repositories_endpoint(
    provider: ProviderKind,
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> list[AvailableRepository]:
    """Repositories the caller can connect; requires a token for the provider."""
    return await list_available_repositories(db, user_id, provider)


@router.post("", response_model=RepositoryResponse, status_code=status.HTTP_201_CREATED)
async def connect_repository_endpoint(
    body: ConnectRepositoryRequest,
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> RepositoryResponse:
    """
    Starts tracking a project. Resolves the caller's permission on it once;
    requires a linked account or personal token for the provider.
    """
    repo = await connect_repository(
        db, user_id, body.provider, body.owner, body.name, sync_mode=body.sync_mode
    )
    return _to_response(repo)


@router.patch("/{repo_id}", response_model=RepositoryResponse)
async def update_repository_endpoint(
    repo_id: UUID,
    body: UpdateRepositoryRequest,
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> RepositoryResponse:
    if body.sync_mode is None and body.sync_enabled is None:
        raise HTTPException(status_code=400, detail="No fields to update")

    repo = await update_repository(
        db, user_id, repo_id, sync_mode=body.sync_mode, sync_enabled=body.sync_enabled
    )
    return _to_response(repo)


@router.delete("/{repo_id}")
async def disconnect_repository_endpoint(
    repo_id: UUID,
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> dict:
    await disconnect_repository(db, user_id, repo_id)
    return {"ok": True}


@router.get("/{repo_id}/labels", response_model=list[LabelResponse])
async def list_labels_endpoint(
    repo_id: UUID,
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> list[LabelResponse]:
    labels = await fetch_repository_labels(db, user_id, repo_id)
    return [
        LabelResponse(name=label.name, color=label.color, description=label.description)
        for label in labels
    ]


@router.get("/{repo_id}/collaborators", response_model=list[CollaboratorResponse])
async def list_collaborators_endpoint(
    repo_id: UUID,
    user_id: Annotated[UUID, Depends(require_user_id)],
    db: AsyncSession = Depends(get_db),
) -> list[CollaboratorResponse]:
    collaborators = await fetch_repository_collaborators(db, user_id, repo_id)
    return [
        CollaboratorResponse(username=c.username, avatar=c.avatar, permission=c.permission)
        for c in collaborators
    ]
