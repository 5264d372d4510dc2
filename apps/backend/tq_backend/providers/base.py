"""Capability contract shared by every origin-system adapter"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from tq_shared.constants import IssueState, Permission, ProviderKind

if TYPE_CHECKING:
    import httpx

# Facet keys reported by update_issue; used to mirror only what reached the origin
FACET_STATE = "state"
FACET_LABELS_ADD = "labels.add"
FACET_LABELS_REMOVE = "labels.remove"
FACET_ASSIGNEES_ADD = "assignees.add"
FACET_ASSIGNEES_REMOVE = "assignees.remove"


class ProviderAPIError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderRateLimitError(ProviderAPIError):
    def __init__(self, reset_at: int | None = None):
        super().__init__("Provider API rate limit exceeded", status_code=403)
        self.reset_at = reset_at


class ProviderAuthError(ProviderAPIError):
    def __init__(self):
        super().__init__("Provider authentication failed", status_code=401)


@dataclass
class ProviderIssue:
    provider_issue_id: str
    number: int
    title: str
    body: str | None
    author: str | None
    author_avatar: str | None
    state: IssueState
    labels: list[str]
    assignees: list[str]
    url: str
    created_at: datetime
    updated_at: datetime


@dataclass
class SetChange:
    add: list[str] = field(default_factory=list)
    remove: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.add and not self.remove


@dataclass
class IssueUpdate:
    """Provider-facing change; local-only triage fields never appear here"""
    labels: SetChange | None = None
    assignees: SetChange | None = None
    state: IssueState | None = None

    def is_empty(self) -> bool:
        return (
            (self.labels is None or self.labels.is_empty())
            and (self.assignees is None or self.assignees.is_empty())
            and self.state is None
        )


@dataclass
class IssueUpdateResult:
    applied: set[str] = field(default_factory=set)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def attempted(self) -> bool:
        return bool(self.applied or self.failed)

    @property
    def fully_failed(self) -> bool:
        return not self.applied and bool(self.failed)


@dataclass
class ProviderLabel:
    name: str
    color: str | None
    description: str | None


@dataclass
class ProviderCollaborator:
    username: str
    avatar: str | None
    permission: Permission


@dataclass
class ProviderRepository:
    """A repository the token owner can see and could start tracking"""
    owner: str
    name: str
    full_name: str
    description: str | None
    permission: Permission
    private: bool


@dataclass
class ProviderUser:
    id: str
    username: str
    name: str
    email: str | None
    avatar: str | None


def format_since(since: datetime) -> str:
    """ISO 8601 in UTC with a Z suffix, accepted by both origin APIs"""
    if since.tzinfo is None:
        since = since.replace(tzinfo=UTC)
    return since.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class IssueProvider(ABC):
    """
    Uniform capability contract. Adapters absorb pagination, state vocabulary,
    label mutation semantics and assignee addressing so the engine only sees
    the normalized shape.
    """

    kind: ProviderKind

    @abstractmethod
    async def fetch_issues(
        self,
        owner: str,
        project: str,
        token: str,
        since: datetime | None = None,
    ) -> list[ProviderIssue]:
        """
        Every issue in the project, most recently updated first.
        A failing page ends pagination and returns what was collected so far;
        a rejected token raises ProviderAuthError.
        """

    @abstractmethod
    async def update_issue(
        self,
        owner: str,
        project: str,
        issue_number: int,
        token: str,
        change: IssueUpdate,
    ) -> IssueUpdateResult:
        """Best effort: each facet is applied independently"""

    @abstractmethod
    async def get_repo_permission(self, owner: str, project: str, token: str) -> Permission:
        """Defaults to read on any resolution failure"""

    async def fetch_labels(self, owner: str, project: str, token: str) -> list[ProviderLabel]:
        return []

    async def fetch_collaborators(
        self, owner: str, project: str, token: str
    ) -> list[ProviderCollaborator]:
        return []

    async def fetch_available_repositories(self, token: str) -> list[ProviderRepository]:
        return []

    @abstractmethod
    async def validate_token(self, token: str) -> ProviderUser:
        """Resolves the token owner; raises ProviderAuthError when rejected"""

    async def aclose(self) -> None:
        return None


def check_response(response: httpx.Response) -> None:
    """Raises the contract's error types for non-2xx responses"""
    if response.status_code == 401:
        raise ProviderAuthError()
    if response.status_code >= 400:
        raise ProviderAPIError(
            f"Provider returned {response.status_code}",
            status_code=response.status_code,
        )


def parse_json(response: httpx.Response) -> Any:
    """check_response plus body decoding; an undecodable 2xx body is a provider error"""
    check_response(response)
    try:
        return response.json()
    except ValueError as e:
        raise ProviderAPIError(
            f"Provider returned an invalid JSON body: {e}",
            status_code=response.status_code,
        ) from e
