"""
Server-side write path for a single triage action.

Local fields (priority, snooze, dismissal) always land on the user's triage
row. Provider fields either go straight to the origin system (live) or are
folded into the row's pending-change document (batch).
"""
import logging
from datetime import UTC, datetime
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from tq_database.models.triage import TriageState
from tq_shared.constants import ProviderKind, SyncMode

from tq_backend.core.audit import AuditEvent, log_audit_event
from tq_backend.core.errors import (
    InvalidTriagePayloadError,
    IssueNotFoundError,
    ProviderTokenMissingError,
    ProviderWriteError,
)
from tq_backend.providers.registry import get_provider
from tq_backend.services.issue_service import get_owned_issue
from tq_backend.services.pending_changes import PendingChanges, merge_pending_changes, to_issue_update
from tq_backend.services.sync_engine import mirror_issue_update
from tq_backend.services.token_service import resolve_provider_token

logger = logging.getLogger(__name__)


class TriageResult(BaseModel):
    issue_id: UUID
    batched: bool
    provider_write: bool = False
    failed_facets: list[str] = []
    pending_changes: dict = {}


async def _get_or_create_triage(db: AsyncSession, user_id: UUID, issue_id: UUID) -> TriageState:
    result = await db.exec(
        select(TriageState).where(
            TriageState.issue_id == issue_id,
            TriageState.user_id == user_id,
        )
    )
    triage = result.first()
    if triage is None:
        triage = TriageState(issue_id=issue_id, user_id=user_id, pending_changes={})
    return triage


async def apply_triage(
    db: AsyncSession,
    user_id: UUID,
    issue_id: UUID,
    payload: PendingChanges,
    batch: bool = False,
) -> TriageResult:
    """
    Batch handling applies when requested or when the repository is in batch
    mode. In live mode nothing is persisted unless the provider write (if any)
    succeeds.
    """
    if payload.is_empty():
        raise InvalidTriagePayloadError("Empty triage payload")

    owned = await get_owned_issue(db, user_id, issue_id)
    if owned is None:
        raise IssueNotFoundError(f"Issue {issue_id} not found for user {user_id}")
    issue, repo = owned

    batched = batch or repo.sync_mode == SyncMode.BATCH.value
    triage = await _get_or_create_triage(db, user_id, issue_id)

    for field_name, value in payload.local_fields().items():
        setattr(triage, field_name, value)

    if batched:
        merged = merge_pending_changes(
            PendingChanges.from_document(triage.pending_changes), payload
        )
        triage.pending_changes = merged.to_document()
        triage.batch_pending = True

    triage.updated_at = datetime.now(UTC)
    db.add(triage)

    outcome = TriageResult(issue_id=issue_id, batched=batched)

    change = to_issue_update(payload)
    if not batched and not change.is_empty():
        kind = ProviderKind(repo.provider)
        token = await resolve_provider_token(db, user_id, kind)
        if token is None:
            raise ProviderTokenMissingError(kind.value)

        write = await get_provider(kind).update_issue(
            repo.owner, repo.name, issue.number, token, change
        )
        if write.fully_failed:
            raise ProviderWriteError(f"All facets failed for issue {issue_id}: {write.failed}")

        await mirror_issue_update(db, issue, change, write.applied)
        outcome.provider_write = True
        outcome.failed_facets = sorted(write.failed)

        log_audit_event(
            AuditEvent.LIVE_WRITE,
            user_id=user_id,
            repo_id=repo.id,
            provider=kind.value,
            metadata={"issue_number": issue.number, "applied": sorted(write.applied)},
        )

    await db.commit()

    outcome.pending_changes = dict(triage.pending_changes or {})
    logger.info(
        f"Triage applied to issue {issue_id} ({'batch' if batched else 'live'})",
        extra={"issue_id": str(issue_id), "batched": batched, "provider_write": outcome.provider_write},
    )
    return outcome


async def count_pending(db: AsyncSession, user_id: UUID) -> int:
    result = await db.exec(
        select(func.count())
        .select_from(TriageState)
        .where(TriageState.user_id == user_id, TriageState.batch_pending.is_(True))
    )
    return int(result.one())


__all__ = [
    "TriageResult",
    "apply_triage",
    "count_pending",
]
