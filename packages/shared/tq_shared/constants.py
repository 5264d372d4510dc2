"""
Shared vocabulary for the backend, database and client packages
"""

from enum import Enum


class ProviderKind(str, Enum):
    """Origin system tag stored on a tracked repository at connect time"""

    GITHUB = "github"
    GITLAB = "gitlab"


class SyncMode(str, Enum):
    LIVE = "live"
    BATCH = "batch"


class Permission(str, Enum):
    ADMIN = "admin"
    WRITE = "write"
    READ = "read"


class IssueState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class SyncStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


# P0 = critical, P3 = low
MIN_PRIORITY: int = 0
MAX_PRIORITY: int = 3
