"""
Optimistic triage writes.

Each action moves requested -> applied optimistically -> confirmed or rolled
back. The cached views change before the request goes out; a failed request
restores exactly the views that were touched and reports one error.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from .api import TriageAPIError, TriageQueueClient
from .cache import IssueViewCache, ViewTransaction
from .undo import TriageAction, UndoStack, UndoWindow

logger = logging.getLogger(__name__)

LOCAL_TRIAGE_DEFAULTS = {"priority": None, "snoozed_until": None, "dismissed": False}


class Notifier(Protocol):
    def info(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def offer_undo(self, description: str, window: UndoWindow) -> None: ...


class LoggingNotifier:
    """Default notifier for headless use"""

    def info(self, message: str) -> None:
        logger.info(message)

    def error(self, message: str) -> None:
        logger.error(message)

    def offer_undo(self, description: str, window: UndoWindow) -> None:
        logger.info(f"{description} (undo available)")


def _apply_set(current: list[str], change: dict) -> list[str]:
    result = [item for item in current if item not in change.get("remove", [])]
    for item in change.get("add", []):
        if item not in result:
            result.append(item)
    return result


def _merge_delta(staged: dict | None, change: dict) -> dict:
    # Same reconciliation the server applies to a pending document
    add = list((staged or {}).get("add", []))
    remove = list((staged or {}).get("remove", []))
    for item in change.get("add", []):
        if item in remove:
            remove.remove(item)
        if item not in add:
            add.append(item)
    for item in change.get("remove", []):
        if item in add:
            add.remove(item)
        elif item not in remove:
            remove.append(item)
    return {"add": add, "remove": remove}


def _pending(issue: dict) -> dict:
    return (issue.get("triage") or {}).get("pending_changes") or {}


def effective_list(issue: dict, field_name: str) -> list[str]:
    """Labels or assignees as the user sees them: upstream values plus staged changes"""
    staged = _pending(issue).get(field_name)
    current = list(issue.get(field_name) or [])
    if not staged:
        return current
    return _apply_set(current, staged)


def effective_state(issue: dict) -> str | None:
    return _pending(issue).get("state") or issue.get("state")


def apply_payload_to_issue(issue: dict, payload: dict, batch: bool = False) -> dict:
    """
    Returns a new issue view with the payload applied; the input is untouched.
    In batch mode the payload is folded into the staged pending changes and
    the upstream labels, assignees and state are left as they were.
    """
    updated = dict(issue)
    triage = dict(issue.get("triage") or LOCAL_TRIAGE_DEFAULTS)

    for field_name in LOCAL_TRIAGE_DEFAULTS:
        if field_name in payload:
            triage[field_name] = payload[field_name]

    if batch:
        pending = dict(triage.get("pending_changes") or {})
        for field_name, value in payload.items():
            if field_name in ("labels", "assignees"):
                if value:
                    pending[field_name] = _merge_delta(pending.get(field_name), value)
            else:
                pending[field_name] = value
        triage["pending_changes"] = pending
        triage["batch_pending"] = True
    else:
        if payload.get("labels"):
            updated["labels"] = _apply_set(issue.get("labels") or [], payload["labels"])
        if payload.get("assignees"):
            updated["assignees"] = _apply_set(issue.get("assignees") or [], payload["assignees"])
        if payload.get("state"):
            updated["state"] = payload["state"]

    updated["triage"] = triage
    return updated


def _invert_set(current: list[str], change: dict) -> dict:
    return {
        # Only undo what the change actually altered
        "add": [item for item in change.get("remove", []) if item in current],
        "remove": [item for item in change.get("add", []) if item not in current],
    }


def invert_payload(issue: dict, payload: dict) -> dict:
    """
    The payload that restores issue to its current state after payload is
    applied. Staged changes count as part of the current state.
    """
    triage = issue.get("triage") or LOCAL_TRIAGE_DEFAULTS
    inverse: dict = {}

    for field_name, default in LOCAL_TRIAGE_DEFAULTS.items():
        if field_name in payload:
            inverse[field_name] = triage.get(field_name, default)

    for field_name in ("labels", "assignees"):
        if payload.get(field_name):
            inverse[field_name] = _invert_set(effective_list(issue, field_name), payload[field_name])

    if payload.get("state"):
        inverse["state"] = effective_state(issue)

    return inverse


class TriageOrchestrator:
    def __init__(
        self,
        client: TriageQueueClient,
        cache: IssueViewCache,
        notifier: Notifier | None = None,
        undo_seconds: float | None = None,
    ):
        self._client = client
        self._cache = cache
        self._notifier = notifier or LoggingNotifier()
        self._undo_seconds = undo_seconds
        self.undo_stack = UndoStack()
        self.undo_window: UndoWindow | None = None

    def _is_batch(self, issue: dict | None) -> bool:
        return issue is not None and issue.get("sync_mode") == "batch"

    async def apply(
        self,
        issue_id: str,
        payload: dict,
        description: str,
        batch: bool | None = None,
        previous_payload: dict | None = None,
        record_undo: bool = True,
    ) -> bool:
        """
        Returns True once the server confirmed the write. batch defaults to
        the repository's sync mode as seen in the cached view.
        """
        await self._cache.cancel_refreshes()

        issue = self._cache.find_issue(issue_id)
        if batch is None:
            batch = self._is_batch(issue)
        if previous_payload is None:
            previous_payload = invert_payload(issue, payload) if issue is not None else {}

        transaction = ViewTransaction(self._cache, self._cache.keys_containing(issue_id))
        self._cache.update_issue(issue_id, lambda view: apply_payload_to_issue(view, payload, batch))

        try:
            await self._client.patch_issue(issue_id, payload, batch=batch)
        except (TriageAPIError, httpx.HTTPError) as e:
            transaction.restore()
            logger.warning(
                f"Triage write for issue {issue_id} failed, view restored: {e}",
                extra={"issue_id": issue_id, "restored_views": len(transaction.keys)},
            )
            self._notifier.error("Failed to update issue")
            return False

        if record_undo:
            action = TriageAction(
                issue_id=issue_id,
                payload=payload,
                previous_payload=previous_payload,
                description=description,
            )
            if batch:
                self.undo_stack.push(action)
                self._notifier.info("Change staged")
            else:
                self.undo_window = UndoWindow(
                    action, self._write_inverse, duration_seconds=self._undo_seconds
                )
                self._notifier.offer_undo(description, self.undo_window)

        self._cache.invalidate()
        return True

    async def _write_inverse(self, action: TriageAction) -> bool:
        # No undo for the undo
        return await self.apply(
            action.issue_id,
            action.previous_payload,
            f"Undo: {action.description}",
            batch=False,
            previous_payload=action.payload,
            record_undo=False,
        )

    async def undo(self) -> bool:
        """Replays the most recent staged action's inverse as a normal batch action"""
        action = self.undo_stack.pop()
        if action is None:
            return False
        return await self.apply(
            action.issue_id,
            action.previous_payload,
            f"Undo: {action.description}",
            batch=True,
            previous_payload=action.payload,
            record_undo=False,
        )
