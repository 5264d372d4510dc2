"""Undo bookkeeping: a LIFO stack for staged changes and a short window for live ones"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass


@dataclass
class TriageAction:
    issue_id: str
    payload: dict
    previous_payload: dict
    description: str


class UndoStack:
    def __init__(self):
        self._stack: list[TriageAction] = []

    def push(self, action: TriageAction) -> None:
        self._stack.append(action)

    def pop(self) -> TriageAction | None:
        if not self._stack:
            return None
        return self._stack.pop()

    def clear(self) -> None:
        self._stack.clear()

    def __len__(self) -> int:
        return len(self._stack)


class UndoWindow:
    """
    One-shot undo offered after a live write. Invoking it after the window
    closes, or a second time, does nothing.
    """

    DURATION_SECONDS: float = 5.0

    def __init__(
        self,
        action: TriageAction,
        on_undo: Callable[[TriageAction], Awaitable[bool]],
        duration_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.action = action
        self._on_undo = on_undo
        self._clock = clock
        self._deadline = clock() + (duration_seconds or self.DURATION_SECONDS)
        self._used = False

    def is_open(self) -> bool:
        return not self._used and self._clock() < self._deadline

    async def invoke(self) -> bool:
        if not self.is_open():
            return False
        self._used = True
        return await self._on_undo(self.action)
