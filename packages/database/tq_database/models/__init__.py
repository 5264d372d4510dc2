"""Database models for TriageQueue."""

from tq_database.models.identity import AccessToken, LinkedAccount, User
from tq_database.models.tracking import Issue, TrackedRepository
from tq_database.models.triage import SyncLog, TriageState

__all__ = [
    # Identity
    "User",
    "LinkedAccount",
    "AccessToken",
    # Tracking
    "TrackedRepository",
    "Issue",
    # Triage
    "TriageState",
    "SyncLog",
]
