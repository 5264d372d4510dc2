"""Unit tests for repository_service."""
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from tq_database.models.tracking import TrackedRepository
from tq_shared.constants import Permission

from tq_backend.core.errors import (
    ProviderTokenMissingError,
    RepositoryAlreadyConnectedError,
    RepositoryNotFoundError,
)
from tq_backend.providers.base import ProviderLabel, ProviderRepository
from tq_backend.services.repository_service import (
    connect_repository,
    disconnect_repository,
    fetch_repository_labels,
    get_repository,
    get_sync_status,
    list_available_repositories,
    update_repository,
)

MODULE = "tq_backend.services.repository_service"


def tracked(**overrides) -> TrackedRepository:
    fields = dict(
        id=uuid4(), user_id=uuid4(), provider="github", owner="acme", name="widgets",
        full_name="acme/widgets", permission="write", sync_enabled=True, sync_mode="live",
    )
    fields.update(overrides)
    return TrackedRepository(**fields)


@pytest.fixture
def provider():
    provider = MagicMock()
    provider.get_repo_permission = AsyncMock(return_value=Permission.ADMIN)
    provider.fetch_labels = AsyncMock(return_value=[ProviderLabel(name="bug", color="d73a4a", description=None)])
    with patch(f"{MODULE}.get_provider", return_value=provider):
        yield provider


@pytest.fixture
def token():
    with patch(f"{MODULE}.resolve_provider_token", new_callable=AsyncMock, return_value="tok") as mock_token:
        yield mock_token


class TestGetRepository:

    async def test_scoped_to_user(self, mock_db, make_result):
        mock_db.exec.return_value = make_result(first=None)

        with pytest.raises(RepositoryNotFoundError):
            await get_repository(mock_db, uuid4(), uuid4())


class TestConnectRepository:

    async def test_connects_with_resolved_permission(self, mock_db, make_result, provider, token):
        user_id = uuid4()
        mock_db.exec.return_value = make_result(first=None)

        repo = await connect_repository(mock_db, user_id, "github", "acme", "widgets", sync_mode="batch")

        assert repo.full_name == "acme/widgets"
        assert repo.provider == "github"
        assert repo.permission == "admin"
        assert repo.sync_mode == "batch"
        provider.get_repo_permission.assert_awaited_once_with("acme", "widgets", "tok")
        mock_db.commit.assert_awaited_once()

    async def test_rejects_duplicate(self, mock_db, make_result, provider, token):
        mock_db.exec.return_value = make_result(first=tracked())

        with pytest.raises(RepositoryAlreadyConnectedError):
            await connect_repository(mock_db, uuid4(), "github", "acme", "widgets")

        provider.get_repo_permission.assert_not_called()

    async def test_requires_token(self, mock_db, make_result, provider, token):
        mock_db.exec.return_value = make_result(first=None)
        token.return_value = None

        with pytest.raises(ProviderTokenMissingError):
            await connect_repository(mock_db, uuid4(), "gitlab", "acme", "widgets")

        mock_db.add.assert_not_called()


class TestUpdateRepository:

    async def test_switches_sync_mode(self, mock_db, make_result):
        repo = tracked()
        mock_db.exec.return_value = make_result(first=repo)

        updated = await update_repository(mock_db, repo.user_id, repo.id, sync_mode="batch")

        assert updated.sync_mode == "batch"
        assert updated.sync_enabled is True
        mock_db.commit.assert_awaited_once()

    async def test_no_changes_skips_commit(self, mock_db, make_result):
        repo = tracked()
        mock_db.exec.return_value = make_result(first=repo)

        await update_repository(mock_db, repo.user_id, repo.id)

        mock_db.commit.assert_not_called()


class TestDisconnectRepository:

    async def test_deletes_row(self, mock_db, make_result):
        repo = tracked()
        mock_db.exec.return_value = make_result(first=repo)

        await disconnect_repository(mock_db, repo.user_id, repo.id)

        mock_db.delete.assert_awaited_once_with(repo)
        mock_db.commit.assert_awaited_once()


class TestSyncStatus:

    async def test_reports_markers(self, mock_db, make_result):
        repos = [tracked(full_name="acme/api"), tracked(full_name="acme/web", sync_enabled=False)]
        mock_db.exec.return_value = make_result(all_=repos)

        statuses = await get_sync_status(mock_db, uuid4())

        assert [(s.full_name, s.sync_enabled, s.last_synced_at) for s in statuses] == [
            ("acme/api", True, None),
            ("acme/web", False, None),
        ]


class TestFetchRepositoryLabels:

    async def test_uses_repository_provider(self, mock_db, make_result, provider, token):
        repo = tracked()
        mock_db.exec.return_value = make_result(first=repo)

        labels = await fetch_repository_labels(mock_db, repo.user_id, repo.id)

        assert [label.name for label in labels] == ["bug"]
        provider.fetch_labels.assert_awaited_once_with("acme", "widgets", "tok")


class TestListAvailableRepositories:

    async def test_flags_already_tracked(self, mock_db, make_result, provider, token):
        provider.fetch_available_repositories = AsyncMock(return_value=[
            ProviderRepository(
                owner="acme", name="widgets", full_name="acme/widgets",
                description=None, permission=Permission.WRITE, private=True,
            ),
            ProviderRepository(
                owner="acme", name="docs", full_name="acme/docs",
                description="Docs site", permission=Permission.READ, private=False,
            ),
        ])
        mock_db.exec.return_value = make_result(
            all_=[tracked(), tracked(provider="gitlab", full_name="acme/docs")]
        )

        repos = await list_available_repositories(mock_db, uuid4(), "github")

        assert [(r.full_name, r.permission, r.private, r.tracked) for r in repos] == [
            ("acme/widgets", "write", True, True),
            ("acme/docs", "read", False, False),
        ]
        assert all(r.provider == "github" for r in repos)
        provider.fetch_available_repositories.assert_awaited_once_with("tok")

    async def test_requires_token(self, mock_db, provider, token):
        token.return_value = None
        provider.fetch_available_repositories = AsyncMock()

        with pytest.raises(ProviderTokenMissingError):
            await list_available_repositories(mock_db, uuid4(), "gitlab")

        provider.fetch_available_repositories.assert_not_called()
