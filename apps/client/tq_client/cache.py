"""In-memory issue list views with cancellable background refreshes"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)

# (repo_id or None for all repositories, state filter)
ViewKey = tuple[str | None, str]
ViewLoader = Callable[[ViewKey], Awaitable[list[dict]]]


def _log_refresh_failure(key: ViewKey, task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Issue view refresh failed for {key}: {error}", extra={"view_key": str(key)})


class IssueViewCache:
    def __init__(self, loader: ViewLoader | None = None):
        self._views: dict[ViewKey, list[dict]] = {}
        self._loader = loader
        self._refreshes: dict[ViewKey, asyncio.Task] = {}

    def get(self, key: ViewKey) -> list[dict] | None:
        return self._views.get(key)

    def set(self, key: ViewKey, issues: list[dict] | None) -> None:
        if issues is None:
            self._views.pop(key, None)
        else:
            self._views[key] = issues

    def keys(self) -> list[ViewKey]:
        return list(self._views)

    def keys_containing(self, issue_id: str) -> list[ViewKey]:
        return [
            key for key, issues in self._views.items()
            if any(issue["id"] == issue_id for issue in issues)
        ]

    def find_issue(self, issue_id: str) -> dict | None:
        for issues in self._views.values():
            for issue in issues:
                if issue["id"] == issue_id:
                    return issue
        return None

    def update_issue(self, issue_id: str, transform: Callable[[dict], dict]) -> None:
        for key, issues in self._views.items():
            self._views[key] = [
                transform(issue) if issue["id"] == issue_id else issue for issue in issues
            ]

    def refresh(self, key: ViewKey) -> asyncio.Task | None:
        """Schedules a reload of one view, replacing any refresh already in flight"""
        if self._loader is None:
            return None

        existing = self._refreshes.get(key)
        if existing is not None and not existing.done():
            existing.cancel()

        task = asyncio.create_task(self._reload(key))
        task.add_done_callback(lambda done: _log_refresh_failure(key, done))
        self._refreshes[key] = task
        return task

    def invalidate(self) -> None:
        for key in self.keys():
            self.refresh(key)

    async def _reload(self, key: ViewKey) -> None:
        issues = await self._loader(key)
        self._views[key] = issues

    async def cancel_refreshes(self) -> None:
        """Best effort: a stale reload must not overwrite an optimistic update"""
        tasks = [task for task in self._refreshes.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refreshes.clear()

    async def wait_for_refreshes(self) -> None:
        tasks = list(self._refreshes.values())
        if tasks:
            # Failures are logged by the done callback
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refreshes.clear()


class ViewTransaction:
    """Snapshot of exactly the views an action touches, restorable on failure"""

    def __init__(self, cache: IssueViewCache, keys: Iterable[ViewKey]):
        self._cache = cache
        self._snapshots = {key: copy.deepcopy(cache.get(key)) for key in keys}

    @property
    def keys(self) -> list[ViewKey]:
        return list(self._snapshots)

    def restore(self) -> None:
        for key, issues in self._snapshots.items():
            self._cache.set(key, issues)
