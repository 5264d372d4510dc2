import json
from datetime import UTC, datetime

import httpx
import pytest
from tq_shared.constants import IssueState, Permission

from tq_backend.providers.base import IssueUpdate, ProviderAuthError, SetChange
from tq_backend.providers.gitlab import GitLabProvider, access_level_to_permission
from tq_backend.providers.transport import ProviderTransport

BASE = "https://gitlab.test"
PROJECT = "/api/v4/projects/acme%2Fwidgets"


def make_provider(handler, page_size: int = 2) -> GitLabProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitLabProvider(
        transport=ProviderTransport(client=client), base_url=BASE, page_size=page_size
    )


def gl_issue(iid: int, **overrides) -> dict:
    data = {
        "id": 5000 + iid,
        "iid": iid,
        "title": f"Issue {iid}",
        "description": "Details",
        "author": {"username": "dana", "avatar_url": "https://avatars.test/dana"},
        "state": "opened",
        "labels": ["bug"],
        "assignees": [{"username": "erin", "id": 11}],
        "web_url": f"https://gitlab.test/acme/widgets/-/issues/{iid}",
        "created_at": "2024-03-01T10:00:00.000Z",
        "updated_at": "2024-03-02T12:30:00.000Z",
    }
    data.update(overrides)
    return data


class TestFetchIssues:
    async def test_addresses_project_by_encoded_path(self):
        seen = {}

        def handler(request):
            seen["raw_path"] = request.url.raw_path.decode().split("?")[0]
            seen["token"] = request.headers["private-token"]
            seen.update(request.url.params)
            return httpx.Response(200, json=[])

        since = datetime(2024, 3, 1, tzinfo=UTC)
        await make_provider(handler).fetch_issues("acme", "widgets", "glpat", since=since)

        assert seen["raw_path"] == f"{PROJECT}/issues"
        assert seen["token"] == "glpat"
        assert seen["state"] == "all"
        assert seen["order_by"] == "updated_at"
        assert seen["sort"] == "desc"
        assert seen["updated_after"] == "2024-03-01T00:00:00Z"

    async def test_normalizes_state_vocabulary(self):
        def handler(request):
            return httpx.Response(200, json=[gl_issue(2), gl_issue(1, state="closed")])

        issues = await make_provider(handler, page_size=100).fetch_issues("acme", "widgets", "t")

        assert [i.state for i in issues] == [IssueState.OPEN, IssueState.CLOSED]
        assert issues[0].number == 2
        assert issues[0].provider_issue_id == "5002"
        assert issues[0].body == "Details"
        assert issues[0].assignees == ["erin"]
        assert issues[0].url.endswith("/-/issues/2")

    async def test_paginates_until_short_page(self):
        def handler(request):
            page = request.url.params["page"]
            if page == "1":
                return httpx.Response(200, json=[gl_issue(3), gl_issue(2)])
            return httpx.Response(200, json=[gl_issue(1)])

        issues = await make_provider(handler).fetch_issues("acme", "widgets", "t")

        assert [i.number for i in issues] == [3, 2, 1]

    async def test_rejected_token_raises(self):
        def handler(request):
            return httpx.Response(401, json={"message": "401 Unauthorized"})

        with pytest.raises(ProviderAuthError):
            await make_provider(handler).fetch_issues("acme", "widgets", "bad")

    async def test_undecodable_page_ends_with_partial_result(self):
        def handler(request):
            if request.url.params["page"] == "1":
                return httpx.Response(200, json=[gl_issue(3), gl_issue(2)])
            return httpx.Response(200, text="<html>maintenance</html>")

        issues = await make_provider(handler).fetch_issues("acme", "widgets", "t")

        assert [i.number for i in issues] == [3, 2]


class TestUpdateIssue:
    """Labels and assignees are replaced wholesale in a single PUT"""

    async def test_builds_full_replacement(self):
        puts = []

        def handler(request):
            path = request.url.raw_path.decode().split("?")[0]
            if request.method == "GET" and path == f"{PROJECT}/issues/4":
                return httpx.Response(
                    200,
                    json=gl_issue(4, labels=["bug", "stale"], assignees=[{"username": "erin"}]),
                )
            if request.method == "GET" and path == "/api/v4/users":
                ids = {"erin": 11, "finn": 12}
                return httpx.Response(200, json=[{"id": ids[request.url.params["username"]]}])
            if request.method == "PUT":
                puts.append(json.loads(request.content))
                return httpx.Response(200, json={})
            return httpx.Response(404)

        change = IssueUpdate(
            labels=SetChange(add=["triaged"], remove=["stale"]),
            assignees=SetChange(add=["finn"]),
            state=IssueState.CLOSED,
        )
        result = await make_provider(handler).update_issue("acme", "widgets", 4, "t", change)

        assert puts == [
            {"state_event": "close", "labels": "bug,triaged", "assignee_ids": [11, 12]}
        ]
        assert result.applied == {"state", "labels.add", "labels.remove", "assignees.add"}

    async def test_reopen_only_skips_issue_read(self):
        requests = []

        def handler(request):
            requests.append(request.method)
            return httpx.Response(200, json={})

        change = IssueUpdate(state=IssueState.OPEN)
        result = await make_provider(handler).update_issue("acme", "widgets", 4, "t", change)

        assert requests == ["PUT"]
        assert result.applied == {"state"}

    async def test_failed_put_fails_every_included_facet(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json=gl_issue(4))
            return httpx.Response(403, json={"message": "403 Forbidden"})

        change = IssueUpdate(labels=SetChange(add=["triaged"]), state=IssueState.CLOSED)
        result = await make_provider(handler).update_issue("acme", "widgets", 4, "t", change)

        assert result.fully_failed
        assert set(result.failed) == {"state", "labels.add"}

    async def test_unreadable_issue_still_sends_state(self):
        puts = []

        def handler(request):
            if request.method == "GET":
                return httpx.Response(500)
            puts.append(json.loads(request.content))
            return httpx.Response(200, json={})

        change = IssueUpdate(labels=SetChange(add=["triaged"]), state=IssueState.CLOSED)
        result = await make_provider(handler).update_issue("acme", "widgets", 4, "t", change)

        assert puts == [{"state_event": "close"}]
        assert result.applied == {"state"}
        assert set(result.failed) == {"labels.add"}


    async def test_unknown_assignee_fails_add_facet(self):
        puts = []

        def handler(request):
            path = request.url.raw_path.decode().split("?")[0]
            if request.method == "GET" and path == f"{PROJECT}/issues/4":
                return httpx.Response(200, json=gl_issue(4, assignees=[{"username": "erin"}]))
            if request.method == "GET" and path == "/api/v4/users":
                if request.url.params["username"] == "erin":
                    return httpx.Response(200, json=[{"id": 11}])
                return httpx.Response(200, json=[])
            puts.append(json.loads(request.content))
            return httpx.Response(200, json={})

        change = IssueUpdate(assignees=SetChange(add=["ghost"]), state=IssueState.CLOSED)
        result = await make_provider(handler).update_issue("acme", "widgets", 4, "t", change)

        assert puts == [{"state_event": "close"}]
        assert result.applied == {"state"}
        assert set(result.failed) == {"assignees.add"}
        assert "ghost" in result.failed["assignees.add"]

    async def test_unknown_assignee_does_not_block_removal(self):
        puts = []

        def handler(request):
            path = request.url.raw_path.decode().split("?")[0]
            if request.method == "GET" and path == f"{PROJECT}/issues/4":
                return httpx.Response(200, json=gl_issue(4, assignees=[{"username": "erin"}]))
            if request.method == "GET":
                return httpx.Response(200, json=[])
            puts.append(json.loads(request.content))
            return httpx.Response(200, json={})

        change = IssueUpdate(assignees=SetChange(add=["ghost"], remove=["erin"]))
        result = await make_provider(handler).update_issue("acme", "widgets", 4, "t", change)

        assert puts == [{"assignee_ids": []}]
        assert result.applied == {"assignees.remove"}
        assert set(result.failed) == {"assignees.add"}


class TestPermissions:
    @pytest.mark.parametrize(
        ("level", "expected"),
        [(50, Permission.ADMIN), (40, Permission.ADMIN), (30, Permission.WRITE), (20, Permission.READ), (None, Permission.READ)],
    )
    def test_access_level_mapping(self, level, expected):
        assert access_level_to_permission(level) == expected

    async def test_uses_higher_of_project_and_group_access(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "permissions": {
                        "project_access": {"access_level": 30},
                        "group_access": {"access_level": 40},
                    }
                },
            )

        permission = await make_provider(handler).get_repo_permission("acme", "widgets", "t")

        assert permission == Permission.ADMIN

    async def test_missing_group_access(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"permissions": {"project_access": {"access_level": 30}, "group_access": None}},
            )

        permission = await make_provider(handler).get_repo_permission("acme", "widgets", "t")

        assert permission == Permission.WRITE

    async def test_defaults_to_read_on_failure(self):
        def handler(request):
            return httpx.Response(404)

        assert await make_provider(handler).get_repo_permission("acme", "widgets", "t") == Permission.READ


class TestLabelsAndMembers:
    async def test_strips_hash_from_color(self):
        def handler(request):
            return httpx.Response(
                200, json=[{"name": "bug", "color": "#d9534f", "description": None}]
            )

        labels = await make_provider(handler).fetch_labels("acme", "widgets", "t")

        assert labels[0].color == "d9534f"

    async def test_members_include_inherited(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.raw_path.decode().split("?")[0]
            return httpx.Response(
                200, json=[{"username": "erin", "avatar_url": None, "access_level": 30}]
            )

        members = await make_provider(handler).fetch_collaborators("acme", "widgets", "t")

        assert seen["path"] == f"{PROJECT}/members/all"
        assert members[0].permission == Permission.WRITE


class TestValidateToken:
    async def test_returns_token_owner(self):
        def handler(request):
            assert request.url.path == "/api/v4/user"
            return httpx.Response(200, json={"id": 9, "username": "dana", "name": "Dana"})

        user = await make_provider(handler).validate_token("t")

        assert user.id == "9"
        assert user.name == "Dana"


class TestAvailableRepositories:
    async def test_lists_member_projects(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen.update(request.url.params)
            return httpx.Response(
                200,
                json=[
                    {
                        "namespace": {"path": "acme"},
                        "path": "widgets",
                        "path_with_namespace": "acme/widgets",
                        "description": "Widget factory",
                        "visibility": "private",
                        "permissions": {
                            "project_access": {"access_level": 30},
                            "group_access": {"access_level": 40},
                        },
                    },
                    {
                        "namespace": {"path": "dana"},
                        "path": "notes",
                        "path_with_namespace": "dana/notes",
                        "description": None,
                        "visibility": "public",
                        "permissions": {"project_access": None, "group_access": None},
                    },
                ],
            )

        repos = await make_provider(handler, page_size=100).fetch_available_repositories("t")

        assert seen["path"] == "/api/v4/projects"
        assert seen["membership"] == "true"
        assert [r.full_name for r in repos] == ["acme/widgets", "dana/notes"]
        assert repos[0].owner == "acme"
        assert repos[0].name == "widgets"
        assert repos[0].permission == Permission.ADMIN
        assert repos[0].private is True
        assert repos[1].permission == Permission.READ
        assert repos[1].private is False
