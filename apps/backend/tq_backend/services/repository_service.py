"""
Tracked repository management: connect, settings, disconnect and sync status.
Every lookup is scoped by the owning user.
"""
import logging
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from tq_database.models.tracking import TrackedRepository
from tq_shared.constants import ProviderKind, SyncMode

from tq_backend.core.audit import AuditEvent, log_audit_event
from tq_backend.core.errors import (
    ProviderTokenMissingError,
    RepositoryAlreadyConnectedError,
    RepositoryNotFoundError,
)
from tq_backend.providers.base import ProviderCollaborator, ProviderLabel, ProviderRepository
from tq_backend.providers.registry import get_provider
from tq_backend.services.token_service import resolve_provider_token

logger = logging.getLogger(__name__)


class AvailableRepository(BaseModel):
    provider: str
    owner: str
    name: str
    full_name: str
    description: str | None
    permission: str
    private: bool
    tracked: bool


class RepositorySyncStatus(BaseModel):
    repo_id: UUID
    full_name: str
    provider: str
    sync_enabled: bool
    last_synced_at: datetime | None


async def get_repository(db: AsyncSession, user_id: UUID, repo_id: UUID) -> TrackedRepository:
    result = await db.exec(
        select(TrackedRepository).where(
            TrackedRepository.id == repo_id,
            TrackedRepository.user_id == user_id,
        )
    )
    repo = result.first()
    if repo is None:
        raise RepositoryNotFoundError(f"Repository {repo_id} not found for user {user_id}")
    return repo


async def list_repositories(db: AsyncSession, user_id: UUID) -> list[TrackedRepository]:
    result = await db.exec(
        select(TrackedRepository)
        .where(TrackedRepository.user_id == user_id)
        .order_by(TrackedRepository.full_name)
    )
    return list(result.all())


async def _require_token(db: AsyncSession, user_id: UUID, provider: ProviderKind) -> str:
    token = await resolve_provider_token(db, user_id, provider)
    if token is None:
        raise ProviderTokenMissingError(provider.value)
    return token


async def connect_repository(
    db: AsyncSession,
    user_id: UUID,
    provider: ProviderKind | str,
    owner: str,
    name: str,
    sync_mode: SyncMode = SyncMode.LIVE,
) -> TrackedRepository:
    """
    Starts tracking a project. The provider tag is fixed here and the
    permission level is resolved once from the origin system.
    """
    kind = ProviderKind(provider)
    full_name = f"{owner}/{name}"

    result = await db.exec(
        select(TrackedRepository).where(
            TrackedRepository.user_id == user_id,
            TrackedRepository.provider == kind.value,
            TrackedRepository.full_name == full_name,
        )
    )
    if result.first() is not None:
        raise RepositoryAlreadyConnectedError(f"{kind.value}:{full_name} already tracked")

    token = await _require_token(db, user_id, kind)
    permission = await get_provider(kind).get_repo_permission(owner, name, token)

    repo = TrackedRepository(
        user_id=user_id,
        provider=kind.value,
        owner=owner,
        name=name,
        full_name=full_name,
        permission=permission.value,
        sync_mode=SyncMode(sync_mode).value,
    )
    db.add(repo)
    await db.commit()
    await db.refresh(repo)

    log_audit_event(
        AuditEvent.REPOSITORY_CONNECTED,
        user_id=user_id,
        repo_id=repo.id,
        provider=kind.value,
        metadata={"full_name": full_name, "permission": permission.value},
    )
    return repo


async def update_repository(
    db: AsyncSession,
    user_id: UUID,
    repo_id: UUID,
    sync_mode: SyncMode | None = None,
    sync_enabled: bool | None = None,
) -> TrackedRepository:
    repo = await get_repository(db, user_id, repo_id)

    changes = {}
    if sync_mode is not None:
        repo.sync_mode = SyncMode(sync_mode).value
        changes["sync_mode"] = repo.sync_mode
    if sync_enabled is not None:
        repo.sync_enabled = sync_enabled
        changes["sync_enabled"] = sync_enabled

    if changes:
        db.add(repo)
        await db.commit()
        await db.refresh(repo)
        log_audit_event(
            AuditEvent.REPOSITORY_SETTINGS_CHANGED,
            user_id=user_id,
            repo_id=repo.id,
            provider=repo.provider,
            metadata=changes,
        )
    return repo


async def disconnect_repository(db: AsyncSession, user_id: UUID, repo_id: UUID) -> None:
    """Issues, triage state and sync logs go with it via FK cascade"""
    repo = await get_repository(db, user_id, repo_id)
    await db.delete(repo)
    await db.commit()

    log_audit_event(
        AuditEvent.REPOSITORY_DISCONNECTED,
        user_id=user_id,
        repo_id=repo_id,
        provider=repo.provider,
        metadata={"full_name": repo.full_name},
    )


async def get_sync_status(db: AsyncSession, user_id: UUID) -> list[RepositorySyncStatus]:
    repos = await list_repositories(db, user_id)
    return [
        RepositorySyncStatus(
            repo_id=repo.id,
            full_name=repo.full_name,
            provider=repo.provider,
            sync_enabled=repo.sync_enabled,
            last_synced_at=repo.last_synced_at,
        )
        for repo in repos
    ]


async def fetch_repository_labels(
    db: AsyncSession, user_id: UUID, repo_id: UUID
) -> list[ProviderLabel]:
    repo = await get_repository(db, user_id, repo_id)
    kind = ProviderKind(repo.provider)
    token = await _require_token(db, user_id, kind)
    return await get_provider(kind).fetch_labels(repo.owner, repo.name, token)


async def fetch_repository_collaborators(
    db: AsyncSession, user_id: UUID, repo_id: UUID
) -> list[ProviderCollaborator]:
    repo = await get_repository(db, user_id, repo_id)
    kind = ProviderKind(repo.provider)
    token = await _require_token(db, user_id, kind)
    return await get_provider(kind).fetch_collaborators(repo.owner, repo.name, token)


async def list_available_repositories(
    db: AsyncSession, user_id: UUID, provider: ProviderKind | str
) -> list[AvailableRepository]:
    """
    Repositories the caller's token can see on the origin system, flagged
    when they are already tracked.
    """
    kind = ProviderKind(provider)
    token = await _require_token(db, user_id, kind)
    remote: list[ProviderRepository] = await get_provider(kind).fetch_available_repositories(token)

    tracked = {
        repo.full_name for repo in await list_repositories(db, user_id) if repo.provider == kind.value
    }
    logger.info(
        f"Listed {len(remote)} available {kind.value} repositories for user {user_id}",
        extra={"provider": kind.value, "count": len(remote)},
    )
    return [
        AvailableRepository(
            provider=kind.value,
            owner=repo.owner,
            name=repo.name,
            full_name=repo.full_name,
            description=repo.description,
            permission=repo.permission.value,
            private=repo.private,
            tracked=repo.full_name in tracked,
        )
        for repo in remote
    ]


__all__ = [
    "RepositorySyncStatus",
    "AvailableRepository",
    "list_available_repositories",
    "get_repository",
    "list_repositories",
    "connect_repository",
    "update_repository",
    "disconnect_repository",
    "get_sync_status",
    "fetch_repository_labels",
    "fetch_repository_collaborators",
]
