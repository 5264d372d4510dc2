"""GitLab REST (v4) adapter"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any
from urllib.parse import quote

from tq_shared.constants import IssueState, Permission, ProviderKind

from .base import (
    FACET_ASSIGNEES_ADD,
    FACET_ASSIGNEES_REMOVE,
    FACET_LABELS_ADD,
    FACET_LABELS_REMOVE,
    FACET_STATE,
    IssueProvider,
    IssueUpdate,
    IssueUpdateResult,
    ProviderAPIError,
    ProviderAuthError,
    ProviderCollaborator,
    ProviderIssue,
    ProviderLabel,
    ProviderRepository,
    ProviderUser,
    SetChange,
    format_since,
    parse_json,
    parse_timestamp,
)
from .transport import ProviderTransport

logger = logging.getLogger(__name__)

GITLAB_BASE_URL = "https://gitlab.com"

# GitLab access levels
MAINTAINER_ACCESS = 40
DEVELOPER_ACCESS = 30


def access_level_to_permission(level: int | None) -> Permission:
    if level is None:
        return Permission.READ
    if level >= MAINTAINER_ACCESS:
        return Permission.ADMIN
    if level >= DEVELOPER_ACCESS:
        return Permission.WRITE
    return Permission.READ


def _apply_set_change(current: list[str], change: SetChange) -> list[str]:
    removed = set(change.remove)
    result = [item for item in current if item not in removed]
    for item in change.add:
        if item not in result and item not in removed:
            result.append(item)
    return result


class GitLabProvider(IssueProvider):
    kind = ProviderKind.GITLAB

    PAGE_SIZE: int = 100

    def __init__(
        self,
        transport: ProviderTransport | None = None,
        base_url: str = GITLAB_BASE_URL,
        page_size: int | None = None,
    ):
        self._transport = transport or ProviderTransport()
        self._api_url = f"{base_url.rstrip('/')}/api/v4"
        self._page_size = page_size or self.PAGE_SIZE

    def _headers(self, token: str) -> dict[str, str]:
        return {"PRIVATE-TOKEN": token}

    @staticmethod
    def _project_path(owner: str, project: str) -> str:
        """Projects are addressed by their URL-encoded namespace path"""
        return f"/projects/{quote(f'{owner}/{project}', safe='')}"

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        response = await self._transport.request(
            method, f"{self._api_url}{path}", self._headers(token), params=params, json=json
        )
        return parse_json(response)

    async def _paginate(
        self, path: str, token: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        page = 1
        while True:
            page_params = {**(params or {}), "per_page": self._page_size, "page": page}
            try:
                items = await self._request("GET", path, token, params=page_params)
            except ProviderAuthError:
                raise
            except ProviderAPIError as e:
                logger.warning(
                    f"Stopping pagination of {path} at page {page}: {e}",
                    extra={"status_code": e.status_code},
                )
                return

            for item in items:
                yield item

            if len(items) < self._page_size:
                return
            page += 1

    async def fetch_issues(
        self,
        owner: str,
        project: str,
        token: str,
        since: datetime | None = None,
    ) -> list[ProviderIssue]:
        params: dict[str, Any] = {"state": "all", "order_by": "updated_at", "sort": "desc"}
        if since is not None:
            params["updated_after"] = format_since(since)

        path = f"{self._project_path(owner, project)}/issues"
        return [self._to_issue(item) async for item in self._paginate(path, token, params)]

    def _to_issue(self, item: dict[str, Any]) -> ProviderIssue:
        author = item.get("author") or {}
        return ProviderIssue(
            provider_issue_id=str(item["id"]),
            number=item["iid"],
            title=item.get("title") or "",
            body=item.get("description"),
            author=author.get("username"),
            author_avatar=author.get("avatar_url"),
            state=IssueState.OPEN if item.get("state") == "opened" else IssueState.CLOSED,
            labels=list(item.get("labels") or []),
            assignees=[a["username"] for a in item.get("assignees") or []],
            url=item.get("web_url") or "",
            created_at=parse_timestamp(item["created_at"]),
            updated_at=parse_timestamp(item["updated_at"]),
        )

    async def _resolve_user_ids(self, usernames: list[str], token: str) -> tuple[list[int], list[str]]:
        """Returns the resolved ids and the usernames GitLab does not know"""
        ids = []
        missing = []
        for username in usernames:
            users = await self._request("GET", "/users", token, params={"username": username})
            if users:
                ids.append(users[0]["id"])
            else:
                logger.warning(f"GitLab user {username} not found, skipping assignment")
                missing.append(username)
        return ids, missing

    async def update_issue(
        self,
        owner: str,
        project: str,
        issue_number: int,
        token: str,
        change: IssueUpdate,
    ) -> IssueUpdateResult:
        """
        GitLab replaces labels and assignees wholesale, so the current issue is
        read first and the new sets are computed before a single PUT.
        """
        path = f"{self._project_path(owner, project)}/issues/{issue_number}"
        result = IssueUpdateResult()
        body: dict[str, Any] = {}
        pending: list[str] = []

        if change.state is not None:
            body["state_event"] = "reopen" if change.state == IssueState.OPEN else "close"
            pending.append(FACET_STATE)

        label_facets = _set_facets(change.labels, FACET_LABELS_ADD, FACET_LABELS_REMOVE)
        assignee_facets = _set_facets(change.assignees, FACET_ASSIGNEES_ADD, FACET_ASSIGNEES_REMOVE)

        if label_facets or assignee_facets:
            try:
                current = await self._request("GET", path, token)
            except ProviderAPIError as e:
                for facet in label_facets + assignee_facets:
                    result.failed[facet] = str(e)
                current = None

            if current is not None and label_facets:
                body["labels"] = ",".join(
                    _apply_set_change(list(current.get("labels") or []), change.labels)
                )
                pending.extend(label_facets)

            if current is not None and assignee_facets:
                usernames = _apply_set_change(
                    [a["username"] for a in current.get("assignees") or []], change.assignees
                )
                try:
                    ids, missing = await self._resolve_user_ids(usernames, token)
                except ProviderAPIError as e:
                    for facet in assignee_facets:
                        result.failed[facet] = str(e)
                else:
                    unknown = [name for name in missing if name in change.assignees.add]
                    if unknown:
                        result.failed[FACET_ASSIGNEES_ADD] = f"Unknown users: {', '.join(unknown)}"
                        assignee_facets = [f for f in assignee_facets if f != FACET_ASSIGNEES_ADD]
                    if assignee_facets:
                        body["assignee_ids"] = ids
                        pending.extend(assignee_facets)

        if body:
            try:
                await self._request("PUT", path, token, json=body)
                result.applied.update(pending)
            except ProviderAPIError as e:
                for facet in pending:
                    result.failed[facet] = str(e)

        if result.failed:
            logger.warning(
                f"Partial write to {owner}/{project}#{issue_number}",
                extra={"failed_facets": sorted(result.failed), "applied": sorted(result.applied)},
            )
        return result

    async def get_repo_permission(self, owner: str, project: str, token: str) -> Permission:
        try:
            data = await self._request("GET", self._project_path(owner, project), token)
        except ProviderAPIError as e:
            logger.info(f"Permission lookup for {owner}/{project} failed, assuming read: {e}")
            return Permission.READ

        permissions = data.get("permissions") or {}
        levels = [
            (permissions.get(scope) or {}).get("access_level") or 0
            for scope in ("project_access", "group_access")
        ]
        return access_level_to_permission(max(levels))

    async def fetch_labels(self, owner: str, project: str, token: str) -> list[ProviderLabel]:
        path = f"{self._project_path(owner, project)}/labels"
        return [
            ProviderLabel(
                name=item["name"],
                color=(item.get("color") or "").lstrip("#") or None,
                description=item.get("description"),
            )
            async for item in self._paginate(path, token)
        ]

    async def fetch_collaborators(
        self, owner: str, project: str, token: str
    ) -> list[ProviderCollaborator]:
        path = f"{self._project_path(owner, project)}/members/all"
        return [
            ProviderCollaborator(
                username=item["username"],
                avatar=item.get("avatar_url"),
                permission=access_level_to_permission(item.get("access_level")),
            )
            async for item in self._paginate(path, token)
        ]

    async def fetch_available_repositories(self, token: str) -> list[ProviderRepository]:
        params = {"membership": "true", "order_by": "updated_at"}
        repositories = []
        async for item in self._paginate("/projects", token, params):
            permissions = item.get("permissions") or {}
            level = max(
                (permissions.get(scope) or {}).get("access_level") or 0
                for scope in ("project_access", "group_access")
            )
            repositories.append(
                ProviderRepository(
                    owner=item["namespace"]["path"],
                    name=item["path"],
                    full_name=item["path_with_namespace"],
                    description=item.get("description"),
                    permission=access_level_to_permission(level),
                    private=item.get("visibility") == "private",
                )
            )
        return repositories

    async def validate_token(self, token: str) -> ProviderUser:
        data = await self._request("GET", "/user", token)
        return ProviderUser(
            id=str(data["id"]),
            username=data["username"],
            name=data.get("name") or data["username"],
            email=data.get("email"),
            avatar=data.get("avatar_url"),
        )

    async def aclose(self) -> None:
        await self._transport.aclose()


def _set_facets(change: SetChange | None, add_facet: str, remove_facet: str) -> list[str]:
    if change is None:
        return []
    facets = []
    if change.add:
        facets.append(add_facet)
    if change.remove:
        facets.append(remove_facet)
    return facets
