"""GitHub REST adapter"""

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
    check_response,
    format_since,
    parse_json,
    parse_timestamp,
)
from .transport import ProviderTransport, RateAwareTransport

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

_ROLE_PERMISSIONS = {
    "admin": Permission.ADMIN,
    "maintain": Permission.WRITE,
    "write": Permission.WRITE,
}


def _repository_permission(flags: dict[str, bool]) -> Permission:
    if flags.get("admin"):
        return Permission.ADMIN
    if flags.get("push") or flags.get("maintain"):
        return Permission.WRITE
    return Permission.READ


class GitHubProvider(IssueProvider):
    kind = ProviderKind.GITHUB

    API_VERSION: str = "2022-11-28"
    PAGE_SIZE: int = 100

    def __init__(
        self,
        transport: ProviderTransport | None = None,
        api_url: str = GITHUB_API_URL,
        page_size: int | None = None,
    ):
        self._transport = transport or RateAwareTransport()
        self._api_url = api_url.rstrip("/")
        self._page_size = page_size or self.PAGE_SIZE

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.API_VERSION,
        }

    async def _get_json(self, path: str, token: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._transport.request(
            "GET", f"{self._api_url}{path}", self._headers(token), params=params
        )
        return parse_json(response)

    async def _paginate(
        self, path: str, token: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Stops on a short page or a failing page; auth failures propagate"""
        page = 1
        while True:
            page_params = {**(params or {}), "per_page": self._page_size, "page": page}
            try:
                items = await self._get_json(path, token, page_params)
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

    async def _attempt(
        self,
        method: str,
        path: str,
        token: str,
        json: Any = None,
        tolerate: frozenset[int] = frozenset(),
    ) -> str | None:
        """Returns an error description, or None when the write landed"""
        try:
            response = await self._transport.request(
                method, f"{self._api_url}{path}", self._headers(token), json=json
            )
            if response.status_code in tolerate:
                return None
            check_response(response)
        except ProviderAPIError as e:
            return str(e)
        return None

    async def fetch_issues(
        self,
        owner: str,
        project: str,
        token: str,
        since: datetime | None = None,
    ) -> list[ProviderIssue]:
        params: dict[str, Any] = {"state": "all", "sort": "updated", "direction": "desc"}
        if since is not None:
            params["since"] = format_since(since)

        issues: list[ProviderIssue] = []
        async for item in self._paginate(f"/repos/{owner}/{project}/issues", token, params):
            # The issues endpoint also lists pull requests
            if "pull_request" in item:
                continue
            issues.append(self._to_issue(item))
        return issues

    def _to_issue(self, item: dict[str, Any]) -> ProviderIssue:
        user = item.get("user") or {}
        return ProviderIssue(
            provider_issue_id=str(item["id"]),
            number=item["number"],
            title=item.get("title") or "",
            body=item.get("body"),
            author=user.get("login"),
            author_avatar=user.get("avatar_url"),
            state=IssueState.OPEN if item.get("state") == "open" else IssueState.CLOSED,
            labels=[
                label if isinstance(label, str) else label["name"]
                for label in item.get("labels") or []
            ],
            assignees=[a["login"] for a in item.get("assignees") or []],
            url=item.get("html_url") or "",
            created_at=parse_timestamp(item["created_at"]),
            updated_at=parse_timestamp(item["updated_at"]),
        )

    async def update_issue(
        self,
        owner: str,
        project: str,
        issue_number: int,
        token: str,
        change: IssueUpdate,
    ) -> IssueUpdateResult:
        path = f"/repos/{owner}/{project}/issues/{issue_number}"
        result = IssueUpdateResult()

        def record(facet: str, error: str | None) -> None:
            if error is None:
                result.applied.add(facet)
            else:
                result.failed[facet] = error

        if change.state is not None:
            record(
                FACET_STATE,
                await self._attempt("PATCH", path, token, json={"state": change.state.value}),
            )

        if change.labels and change.labels.add:
            record(
                FACET_LABELS_ADD,
                await self._attempt(
                    "POST", f"{path}/labels", token, json={"labels": change.labels.add}
                ),
            )

        if change.labels and change.labels.remove:
            errors = []
            for label in change.labels.remove:
                # 404 means the label is already absent
                error = await self._attempt(
                    "DELETE",
                    f"{path}/labels/{quote(label, safe='')}",
                    token,
                    tolerate=frozenset({404}),
                )
                if error:
                    errors.append(f"{label}: {error}")
            record(FACET_LABELS_REMOVE, "; ".join(errors) or None)

        if change.assignees and change.assignees.add:
            record(
                FACET_ASSIGNEES_ADD,
                await self._attempt(
                    "POST", f"{path}/assignees", token, json={"assignees": change.assignees.add}
                ),
            )

        if change.assignees and change.assignees.remove:
            record(
                FACET_ASSIGNEES_REMOVE,
                await self._attempt(
                    "DELETE",
                    f"{path}/assignees",
                    token,
                    json={"assignees": change.assignees.remove},
                ),
            )

        if result.failed:
            logger.warning(
                f"Partial write to {owner}/{project}#{issue_number}",
                extra={"failed_facets": sorted(result.failed), "applied": sorted(result.applied)},
            )
        return result

    async def get_repo_permission(self, owner: str, project: str, token: str) -> Permission:
        try:
            user = await self._get_json("/user", token)
            data = await self._get_json(
                f"/repos/{owner}/{project}/collaborators/{user['login']}/permission", token
            )
        except ProviderAPIError as e:
            logger.info(f"Permission lookup for {owner}/{project} failed, assuming read: {e}")
            return Permission.READ
        return _ROLE_PERMISSIONS.get(data.get("permission", ""), Permission.READ)

    async def fetch_labels(self, owner: str, project: str, token: str) -> list[ProviderLabel]:
        return [
            ProviderLabel(
                name=item["name"],
                color=item.get("color"),
                description=item.get("description"),
            )
            async for item in self._paginate(f"/repos/{owner}/{project}/labels", token)
        ]

    async def fetch_collaborators(
        self, owner: str, project: str, token: str
    ) -> list[ProviderCollaborator]:
        return [
            ProviderCollaborator(
                username=item["login"],
                avatar=item.get("avatar_url"),
                permission=_ROLE_PERMISSIONS.get(item.get("role_name", ""), Permission.READ),
            )
            async for item in self._paginate(f"/repos/{owner}/{project}/collaborators", token)
        ]

    async def fetch_available_repositories(self, token: str) -> list[ProviderRepository]:
        return [
            ProviderRepository(
                owner=item["owner"]["login"],
                name=item["name"],
                full_name=item["full_name"],
                description=item.get("description"),
                permission=_repository_permission(item.get("permissions") or {}),
                private=bool(item.get("private")),
            )
            async for item in self._paginate("/user/repos", token, {"sort": "updated"})
        ]

    async def validate_token(self, token: str) -> ProviderUser:
        data = await self._get_json("/user", token)
        return ProviderUser(
            id=str(data["id"]),
            username=data["login"],
            name=data.get("name") or data["login"],
            email=data.get("email"),
            avatar=data.get("avatar_url"),
        )

    async def aclose(self) -> None:
        await self._transport.aclose()
