from sqlmodel import SQLModel

from tq_database.models.identity import AccessToken, LinkedAccount, User
from tq_database.models.tracking import Issue, TrackedRepository
from tq_database.models.triage import SyncLog, TriageState

Base = SQLModel

__all__ = [
    "Base",
    "SQLModel",
    "User",
    "LinkedAccount",
    "AccessToken",
    "TrackedRepository",
    "Issue",
    "TriageState",
    "SyncLog",
]
