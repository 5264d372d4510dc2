"""tq_shared - Shared constants for TriageQueue."""

from tq_shared.constants import (
    MAX_PRIORITY,
    MIN_PRIORITY,
    IssueState,
    Permission,
    ProviderKind,
    SyncMode,
    SyncStatus,
)

__all__ = [
    "MAX_PRIORITY",
    "MIN_PRIORITY",
    "IssueState",
    "Permission",
    "ProviderKind",
    "SyncMode",
    "SyncStatus",
]
