"""Unit tests for triage_service."""
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from tq_database.models.triage import TriageState
from tq_shared.constants import IssueState

from tq_backend.core.errors import (
    InvalidTriagePayloadError,
    IssueNotFoundError,
    ProviderTokenMissingError,
    ProviderWriteError,
)
from tq_backend.providers.base import IssueUpdate, IssueUpdateResult
from tq_backend.services.pending_changes import PendingChanges
from tq_backend.services.triage_service import apply_triage, count_pending

MODULE = "tq_backend.services.triage_service"


def payload(**fields) -> PendingChanges:
    return PendingChanges.model_validate(fields)


def owned(sync_mode: str = "live") -> tuple[MagicMock, MagicMock]:
    issue = MagicMock()
    issue.id = uuid4()
    issue.number = 12
    issue.labels = ["bug"]
    issue.assignees = []
    issue.state = "open"

    repo = MagicMock()
    repo.id = uuid4()
    repo.provider = "github"
    repo.owner = "acme"
    repo.name = "widgets"
    repo.sync_mode = sync_mode
    return issue, repo


@pytest.fixture
def fake_provider():
    provider = MagicMock()
    provider.update_issue = AsyncMock(return_value=IssueUpdateResult(applied={"state"}))
    with patch(f"{MODULE}.get_provider", return_value=provider):
        yield provider


@pytest.fixture
def token():
    with patch(f"{MODULE}.resolve_provider_token", new_callable=AsyncMock, return_value="tok") as mock_token:
        yield mock_token


@pytest.fixture
def live_issue():
    with patch(f"{MODULE}.get_owned_issue", new_callable=AsyncMock, return_value=owned("live")) as mock_get:
        yield mock_get


@pytest.fixture
def batch_issue():
    with patch(f"{MODULE}.get_owned_issue", new_callable=AsyncMock, return_value=owned("batch")) as mock_get:
        yield mock_get


class TestValidation:

    async def test_rejects_empty_payload(self, mock_db):
        with pytest.raises(InvalidTriagePayloadError):
            await apply_triage(mock_db, uuid4(), uuid4(), PendingChanges())

    async def test_unknown_issue(self, mock_db):
        with patch(f"{MODULE}.get_owned_issue", new_callable=AsyncMock, return_value=None):
            with pytest.raises(IssueNotFoundError):
                await apply_triage(mock_db, uuid4(), uuid4(), payload(priority=1))


class TestLiveMode:

    async def test_local_only_change_skips_provider(
        self, mock_db, make_result, live_issue, fake_provider, token
    ):
        mock_db.exec.return_value = make_result(first=None)

        result = await apply_triage(mock_db, uuid4(), uuid4(), payload(priority=2))

        assert result.batched is False
        assert result.provider_write is False
        fake_provider.update_issue.assert_not_called()
        token.assert_not_called()

        triage = mock_db.add.call_args.args[0]
        assert triage.priority == 2
        assert triage.batch_pending is False
        mock_db.commit.assert_awaited_once()

    async def test_cleared_dismissal_is_stored_as_not_dismissed(
        self, mock_db, make_result, live_issue, fake_provider, token
    ):
        existing = TriageState(issue_id=uuid4(), user_id=uuid4(), dismissed=True, pending_changes={})
        mock_db.exec.return_value = make_result(first=existing)

        await apply_triage(mock_db, uuid4(), uuid4(), payload(dismissed=None))

        triage = mock_db.add.call_args.args[0]
        assert triage is existing
        assert triage.dismissed is False
        fake_provider.update_issue.assert_not_called()

    async def test_provider_change_is_written_and_mirrored(
        self, mock_db, make_result, live_issue, fake_provider, token
    ):
        mock_db.exec.return_value = make_result(first=None)

        result = await apply_triage(mock_db, uuid4(), uuid4(), payload(state="closed", dismissed=True))

        assert result.provider_write is True
        assert result.failed_facets == []
        fake_provider.update_issue.assert_awaited_once_with(
            "acme", "widgets", 12, "tok", IssueUpdate(state=IssueState.CLOSED)
        )

        mirrored = mock_db.execute.await_args.args[0]
        assert mirrored.table.name == "issue"
        assert mirrored.compile().params["state"] == "closed"
        assert mock_db.add.call_args.args[0].dismissed is True
        mock_db.commit.assert_awaited_once()

    async def test_partial_failure_is_reported(
        self, mock_db, make_result, live_issue, fake_provider, token
    ):
        mock_db.exec.return_value = make_result(first=None)
        fake_provider.update_issue.return_value = IssueUpdateResult(
            applied={"labels.add"}, failed={"assignees.add": "422"}
        )

        result = await apply_triage(
            mock_db,
            uuid4(),
            uuid4(),
            payload(labels={"add": ["triaged"]}, assignees={"add": ["ghost"]}),
        )

        assert result.failed_facets == ["assignees.add"]
        params = mock_db.execute.await_args.args[0].compile().params
        assert params["labels"] == ["bug", "triaged"]
        assert params["assignees"] == []

    async def test_missing_token_persists_nothing(
        self, mock_db, make_result, live_issue, fake_provider, token
    ):
        mock_db.exec.return_value = make_result(first=None)
        token.return_value = None

        with pytest.raises(ProviderTokenMissingError):
            await apply_triage(mock_db, uuid4(), uuid4(), payload(state="closed", priority=0))

        fake_provider.update_issue.assert_not_called()
        mock_db.commit.assert_not_called()

    async def test_fully_failed_write_persists_nothing(
        self, mock_db, make_result, live_issue, fake_provider, token
    ):
        mock_db.exec.return_value = make_result(first=None)
        fake_provider.update_issue.return_value = IssueUpdateResult(failed={"state": "403"})

        with pytest.raises(ProviderWriteError):
            await apply_triage(mock_db, uuid4(), uuid4(), payload(state="closed"))

        mock_db.execute.assert_not_called()
        mock_db.commit.assert_not_called()

    async def test_batch_flag_overrides_live_repository(
        self, mock_db, make_result, live_issue, fake_provider, token
    ):
        mock_db.exec.return_value = make_result(first=None)

        result = await apply_triage(mock_db, uuid4(), uuid4(), payload(state="closed"), batch=True)

        assert result.batched is True
        assert result.pending_changes == {"state": "closed"}
        fake_provider.update_issue.assert_not_called()


class TestBatchMode:

    async def test_merges_into_existing_pending_document(
        self, mock_db, make_result, batch_issue, fake_provider, token
    ):
        existing = TriageState(
            issue_id=uuid4(),
            user_id=uuid4(),
            pending_changes={"labels": {"add": ["bug"], "remove": []}, "priority": 3},
            batch_pending=True,
        )
        mock_db.exec.return_value = make_result(first=existing)

        result = await apply_triage(
            mock_db, existing.user_id, existing.issue_id, payload(labels={"add": ["ui"]}, priority=1)
        )

        assert result.batched is True
        assert existing.pending_changes == {
            "labels": {"add": ["bug", "ui"], "remove": []},
            "priority": 1,
        }
        assert existing.priority == 1
        assert existing.batch_pending is True
        fake_provider.update_issue.assert_not_called()
        token.assert_not_called()

    async def test_add_then_remove_leaves_empty_label_delta(
        self, mock_db, make_result, batch_issue, fake_provider, token
    ):
        triage = TriageState(issue_id=uuid4(), user_id=uuid4(), pending_changes={})
        mock_db.exec.return_value = make_result(first=triage)

        await apply_triage(mock_db, triage.user_id, triage.issue_id, payload(labels={"add": ["bug"]}))
        await apply_triage(mock_db, triage.user_id, triage.issue_id, payload(labels={"remove": ["bug"]}))

        assert triage.pending_changes == {"labels": {"add": [], "remove": []}}
        assert triage.batch_pending is True

    async def test_snooze_is_stored_locally_and_staged(
        self, mock_db, make_result, batch_issue, fake_provider, token
    ):
        triage = TriageState(issue_id=uuid4(), user_id=uuid4(), pending_changes={})
        mock_db.exec.return_value = make_result(first=triage)
        until = datetime(2024, 7, 1, tzinfo=UTC)

        await apply_triage(mock_db, triage.user_id, triage.issue_id, payload(snoozed_until=until))

        assert triage.snoozed_until == until
        assert triage.pending_changes == {"snoozed_until": "2024-07-01T00:00:00Z"}


class TestCountPending:

    async def test_returns_count(self, mock_db, make_result):
        mock_db.exec.return_value = make_result(one=4)

        assert await count_pending(mock_db, uuid4()) == 4
