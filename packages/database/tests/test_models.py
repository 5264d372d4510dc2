"""Schema-level guarantees the sync engine relies on."""

from uuid import uuid4

from tq_database.models import Issue, SyncLog, TrackedRepository, TriageState


def _unique_constraints(model) -> set[tuple[str, ...]]:
    table = model.__table__
    return {
        tuple(col.name for col in constraint.columns)
        for constraint in table.constraints
        if constraint.__class__.__name__ == "UniqueConstraint"
    }


def test_issue_upsert_key_is_repository_plus_provider_identifier():
    assert ("repo_id", "provider_issue_id") in _unique_constraints(Issue)


def test_issue_number_is_not_part_of_any_unique_key():
    for columns in _unique_constraints(Issue):
        assert "number" not in columns


def test_triage_state_is_one_row_per_issue_and_user():
    assert ("issue_id", "user_id") in _unique_constraints(TriageState)


def test_tracked_repository_is_unique_per_user_provider_and_name():
    assert ("user_id", "provider", "full_name") in _unique_constraints(TrackedRepository)


def test_issue_rows_cascade_with_their_repository():
    fk = next(iter(Issue.__table__.c.repo_id.foreign_keys))
    assert fk.ondelete == "CASCADE"
    assert fk.column.table.name == "tracked_repository"


def test_sync_log_defaults_to_started():
    log = SyncLog(repo_id=uuid4())
    assert log.status == "started"
    assert log.issues_fetched == 0
    assert log.error is None


def test_triage_state_defaults_have_no_pending_changes():
    state = TriageState(issue_id=uuid4(), user_id=uuid4())
    assert state.batch_pending is False
    assert state.pending_changes == {}
    assert state.dismissed is False
