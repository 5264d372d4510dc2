"""
Pull path (origin system -> issue table) and batch push path (pending
changes -> origin system).

Pull: resolve credentials, fetch issues updated since the freshness marker,
upsert them by (repo_id, provider_issue_id), advance the marker and close the
sync log row. Failures are recorded on the sync log, never raised.

Push: every batch-pending triage row of the user is turned into a provider
update, written, mirrored onto the issue row and cleared. A failing row is
counted and logged without stopping the rest.
"""
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import text, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from tq_database.models.tracking import Issue, TrackedRepository
from tq_database.models.triage import SyncLog, TriageState
from tq_shared.constants import ProviderKind, SyncStatus

from tq_backend.core.audit import AuditEvent, log_audit_event
from tq_backend.core.errors import IssueNotFoundError, ProviderTokenMissingError, ProviderWriteError
from tq_backend.providers.base import IssueUpdate, ProviderIssue
from tq_backend.providers.registry import get_provider
from tq_backend.services.issue_service import get_owned_issue
from tq_backend.services.pending_changes import PendingChanges, apply_update_to_lists, to_issue_update
from tq_backend.services.token_service import resolve_provider_token

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    repo_id: UUID
    status: SyncStatus
    issues_fetched: int = 0
    error: str | None = None


@dataclass
class BatchPushResult:
    pushed: int = 0
    failed: int = 0


UPSERT_ISSUE_SQL = text("""
    INSERT INTO inbox.issue
        (id, repo_id, provider, provider_issue_id, number, title, body,
         author, author_avatar, state, labels, assignees, url,
         created_at, updated_at, fetched_at)
    VALUES
        (:id, :repo_id, :provider, :provider_issue_id, :number, :title, :body,
         :author, :author_avatar, :state, :labels, :assignees, :url,
         :created_at, :updated_at, :fetched_at)
    ON CONFLICT (repo_id, provider_issue_id) DO UPDATE SET
        number = EXCLUDED.number,
        title = EXCLUDED.title,
        body = EXCLUDED.body,
        author = EXCLUDED.author,
        author_avatar = EXCLUDED.author_avatar,
        state = EXCLUDED.state,
        labels = EXCLUDED.labels,
        assignees = EXCLUDED.assignees,
        url = EXCLUDED.url,
        updated_at = EXCLUDED.updated_at,
        fetched_at = EXCLUDED.fetched_at
""")


def _utc_now() -> datetime:
    return datetime.now(UTC)


async def upsert_issues(
    db: AsyncSession,
    repo_id: UUID,
    provider: str,
    issues: list[ProviderIssue],
    fetched_at: datetime,
) -> int:
    """Applied in the order the adapter returned them"""
    for issue in issues:
        await db.execute(
            UPSERT_ISSUE_SQL,
            {
                "id": uuid4(),
                "repo_id": repo_id,
                "provider": provider,
                "provider_issue_id": issue.provider_issue_id,
                "number": issue.number,
                "title": issue.title,
                "body": issue.body,
                "author": issue.author,
                "author_avatar": issue.author_avatar,
                "state": issue.state.value,
                "labels": issue.labels,
                "assignees": issue.assignees,
                "url": issue.url,
                "created_at": issue.created_at,
                "updated_at": issue.updated_at,
                "fetched_at": fetched_at,
            },
        )
    return len(issues)


async def sync_repo(db: AsyncSession, repo_id: UUID, user_id: UUID) -> SyncResult:
    result = await db.exec(
        select(TrackedRepository).where(
            TrackedRepository.id == repo_id,
            TrackedRepository.user_id == user_id,
        )
    )
    repo = result.first()
    if repo is None:
        return SyncResult(repo_id=repo_id, status=SyncStatus.FAILED, error="Repository not found")

    provider = repo.provider
    owner, name, since = repo.owner, repo.name, repo.last_synced_at

    sync_log = SyncLog(repo_id=repo_id, status=SyncStatus.STARTED.value)
    db.add(sync_log)
    await db.commit()
    sync_log_id = sync_log.id

    attempted_at = _utc_now()
    start = time.monotonic()

    try:
        kind = ProviderKind(provider)
        token = await resolve_provider_token(db, user_id, kind)
        if token is None:
            raise ProviderTokenMissingError(kind.value)

        issues = await get_provider(kind).fetch_issues(owner, name, token, since=since)
        fetched = await upsert_issues(db, repo_id, kind.value, issues, fetched_at=attempted_at)

        # Time of the attempt, not the newest issue timestamp
        repo.last_synced_at = attempted_at
        sync_log.status = SyncStatus.COMPLETED.value
        sync_log.issues_fetched = fetched
        sync_log.completed_at = _utc_now()
        db.add(repo)
        db.add(sync_log)
        await db.commit()

    except Exception as e:
        # Discards partial upserts and the marker change
        await db.rollback()
        await db.execute(
            update(SyncLog)
            .where(SyncLog.id == sync_log_id)
            .values(status=SyncStatus.FAILED.value, error=str(e), completed_at=_utc_now())
        )
        await db.commit()

        logger.error(
            f"Sync failed for repository {repo_id}: {e}",
            extra={"repo_id": str(repo_id), "provider": provider, "error_type": type(e).__name__},
        )
        log_audit_event(
            AuditEvent.SYNC_FAILED,
            user_id=user_id,
            repo_id=repo_id,
            provider=provider,
            metadata={"error_type": type(e).__name__},
        )
        return SyncResult(repo_id=repo_id, status=SyncStatus.FAILED, error=str(e))

    elapsed = time.monotonic() - start
    logger.info(
        f"Synced {fetched} issues for repository {repo_id} in {elapsed:.1f}s",
        extra={"repo_id": str(repo_id), "issues_fetched": fetched, "incremental": since is not None},
    )
    log_audit_event(
        AuditEvent.SYNC_COMPLETED,
        user_id=user_id,
        repo_id=repo_id,
        provider=provider,
        metadata={"issues_fetched": fetched},
    )
    return SyncResult(repo_id=repo_id, status=SyncStatus.COMPLETED, issues_fetched=fetched)


async def sync_all_repos(db: AsyncSession, user_id: UUID) -> list[SyncResult]:
    """Sequential over the user's enabled repositories"""
    result = await db.exec(
        select(TrackedRepository.id).where(
            TrackedRepository.user_id == user_id,
            TrackedRepository.sync_enabled.is_(True),
        )
    )
    repo_ids = list(result.all())

    results = []
    for repo_id in repo_ids:
        results.append(await sync_repo(db, repo_id, user_id))
    return results


async def mirror_issue_update(
    db: AsyncSession,
    issue: Issue,
    change: IssueUpdate,
    applied: set[str] | None = None,
) -> None:
    """Reflects a write that reached the origin onto the stored issue row"""
    labels, assignees, state = apply_update_to_lists(
        list(issue.labels or []), list(issue.assignees or []), issue.state, change, applied
    )
    await db.execute(
        update(Issue)
        .where(Issue.id == issue.id)
        .values(labels=labels, assignees=assignees, state=state)
    )


async def _clear_pending(db: AsyncSession, triage_id: UUID) -> None:
    await db.execute(
        update(TriageState)
        .where(TriageState.id == triage_id)
        .values(batch_pending=False, pending_changes={}, updated_at=_utc_now())
    )
    await db.commit()


async def _push_one(
    db: AsyncSession,
    user_id: UUID,
    triage_id: UUID,
    issue_id: UUID,
    document: dict,
) -> None:
    change = to_issue_update(PendingChanges.from_document(document))
    if change.is_empty():
        # Net-zero or local-only staging; nothing to send
        await _clear_pending(db, triage_id)
        return

    owned = await get_owned_issue(db, user_id, issue_id)
    if owned is None:
        raise IssueNotFoundError(f"Issue {issue_id} not found for user {user_id}")
    issue, repo = owned

    kind = ProviderKind(repo.provider)
    token = await resolve_provider_token(db, user_id, kind)
    if token is None:
        raise ProviderTokenMissingError(kind.value)

    write = await get_provider(kind).update_issue(repo.owner, repo.name, issue.number, token, change)
    if write.fully_failed:
        raise ProviderWriteError(f"All facets failed: {sorted(write.failed)}")

    await mirror_issue_update(db, issue, change, write.applied)
    await _clear_pending(db, triage_id)


async def push_batch_changes(db: AsyncSession, user_id: UUID) -> BatchPushResult:
    result = await db.exec(
        select(TriageState).where(
            TriageState.user_id == user_id,
            TriageState.batch_pending.is_(True),
        )
    )
    # Plain values so a rollback for one row cannot expire the rest
    rows = [(t.id, t.issue_id, dict(t.pending_changes or {})) for t in result.all()]

    outcome = BatchPushResult()
    for triage_id, issue_id, document in rows:
        try:
            await _push_one(db, user_id, triage_id, issue_id, document)
            outcome.pushed += 1
        except Exception as e:
            await db.rollback()
            outcome.failed += 1
            logger.warning(
                f"Batch push failed for triage row {triage_id}: {e}",
                extra={"triage_id": str(triage_id), "issue_id": str(issue_id), "error_type": type(e).__name__},
            )

    if rows:
        log_audit_event(
            AuditEvent.BATCH_PUSHED,
            user_id=user_id,
            metadata={"pushed": outcome.pushed, "failed": outcome.failed},
        )
    return outcome


__all__ = [
    "SyncResult",
    "BatchPushResult",
    "upsert_issues",
    "sync_repo",
    "sync_all_repos",
    "mirror_issue_update",
    "push_batch_changes",
]
