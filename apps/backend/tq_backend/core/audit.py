"""Security and reconciliation events logged as JSON to stdout"""
import json
import logging
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

logger = logging.getLogger("audit")


class AuditEvent(str, Enum):
    TOKEN_REGISTERED = "token_registered"
    TOKEN_REJECTED = "token_rejected"
    REPOSITORY_CONNECTED = "repository_connected"
    REPOSITORY_DISCONNECTED = "repository_disconnected"
    REPOSITORY_SETTINGS_CHANGED = "repository_settings_changed"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    BATCH_PUSHED = "batch_pushed"
    LIVE_WRITE = "live_write"


def log_audit_event(
    event: AuditEvent,
    user_id: UUID | None = None,
    repo_id: UUID | None = None,
    provider: str | None = None,
    metadata: dict | None = None,
) -> None:
    """Never include token material in metadata"""
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "event": event.value,
        "user_id": str(user_id) if user_id else None,
        "repo_id": str(repo_id) if repo_id else None,
        "provider": provider,
    }

    if metadata:
        entry.update(metadata)

    entry = {k: v for k, v in entry.items() if v is not None}

    logger.info(json.dumps(entry, default=str))
