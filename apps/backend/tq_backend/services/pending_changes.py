"""
Pending-change documents and the merge rules used by batch mode.

A payload is a partial change: a field that is absent means "leave alone",
while an explicit null clears it. Pydantic's fields-set tracking carries that
distinction through the merge and into the stored JSON document.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from tq_shared.constants import MAX_PRIORITY, MIN_PRIORITY, IssueState

from tq_backend.providers.base import (
    FACET_ASSIGNEES_ADD,
    FACET_ASSIGNEES_REMOVE,
    FACET_LABELS_ADD,
    FACET_LABELS_REMOVE,
    FACET_STATE,
    IssueUpdate,
    SetChange,
)

LOCAL_FIELDS = frozenset({"priority", "snoozed_until", "dismissed"})
PROVIDER_FIELDS = frozenset({"labels", "assignees", "state"})


class SetDelta(BaseModel):
    add: list[str] = Field(default_factory=list)
    remove: list[str] = Field(default_factory=list)


class PendingChanges(BaseModel):
    """Also the shape of a single triage payload"""
    model_config = ConfigDict(extra="forbid")

    priority: int | None = Field(default=None, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    snoozed_until: datetime | None = None
    dismissed: bool | None = None
    labels: SetDelta | None = None
    assignees: SetDelta | None = None
    state: IssueState | None = None

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def local_fields(self) -> dict:
        """Column values for the triage row; a cleared dismissal means not dismissed"""
        values = {k: getattr(self, k) for k in self.model_fields_set & LOCAL_FIELDS}
        if "dismissed" in values and values["dismissed"] is None:
            values["dismissed"] = False
        return values

    def has_provider_fields(self) -> bool:
        return bool(self.model_fields_set & PROVIDER_FIELDS)

    def to_document(self) -> dict:
        """JSON-safe dict for the pending_changes column; absent fields stay absent"""
        return self.model_dump(mode="json", exclude_unset=True)

    @classmethod
    def from_document(cls, document: dict | None) -> "PendingChanges":
        return cls.model_validate(document or {})


def _merge_set(existing: SetDelta | None, incoming: SetDelta) -> SetDelta:
    add = list(existing.add) if existing else []
    remove = list(existing.remove) if existing else []

    for item in incoming.add:
        # An add cancels a staged removal
        if item in remove:
            remove.remove(item)
        if item not in add:
            add.append(item)

    for item in incoming.remove:
        # Removing something never applied upstream is a no-op
        if item in add:
            add.remove(item)
        elif item not in remove:
            remove.append(item)

    return SetDelta(add=add, remove=remove)


def merge_pending_changes(existing: PendingChanges, incoming: PendingChanges) -> PendingChanges:
    """
    Folds incoming into existing without mutating either.

    Scalars are last-write-wins (an explicit None clears). Labels and assignees
    use add/remove reconciliation; an item never ends up in both sets.
    """
    values = {name: getattr(existing, name) for name in existing.model_fields_set}

    for name in ("priority", "snoozed_until", "dismissed", "state"):
        if name in incoming.model_fields_set:
            values[name] = getattr(incoming, name)

    for name in ("labels", "assignees"):
        change = getattr(incoming, name)
        if change is not None:
            values[name] = _merge_set(getattr(existing, name), change)

    return PendingChanges.model_validate(values)


def _to_set_change(delta: SetDelta | None) -> SetChange | None:
    if delta is None or (not delta.add and not delta.remove):
        return None
    return SetChange(add=list(delta.add), remove=list(delta.remove))


def to_issue_update(pending: PendingChanges) -> IssueUpdate:
    """
    Provider-facing subset of a pending document. Local fields are dropped and
    so are empty facets, so a net-zero toggle produces an empty update.
    """
    return IssueUpdate(
        labels=_to_set_change(pending.labels),
        assignees=_to_set_change(pending.assignees),
        state=pending.state,
    )


def _apply_list(current: list[str], change: SetChange, add_ok: bool, remove_ok: bool) -> list[str]:
    result = list(current)
    if remove_ok:
        result = [item for item in result if item not in change.remove]
    if add_ok:
        for item in change.add:
            if item not in result:
                result.append(item)
    return result


def apply_update_to_lists(
    labels: list[str],
    assignees: list[str],
    state: str,
    update: IssueUpdate,
    applied: set[str] | None = None,
) -> tuple[list[str], list[str], str]:
    """
    Mirrors an update onto a stored issue's labels, assignees and state.
    When applied is given, only those facets are mirrored.
    """
    def ok(facet: str) -> bool:
        return applied is None or facet in applied

    if update.labels is not None:
        labels = _apply_list(labels, update.labels, ok(FACET_LABELS_ADD), ok(FACET_LABELS_REMOVE))
    if update.assignees is not None:
        assignees = _apply_list(
            assignees, update.assignees, ok(FACET_ASSIGNEES_ADD), ok(FACET_ASSIGNEES_REMOVE)
        )
    if update.state is not None and ok(FACET_STATE):
        state = update.state.value
    return labels, assignees, state
