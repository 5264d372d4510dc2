"""Thin async client for the TriageQueue HTTP API"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class TriageAPIError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TriageQueueClient:
    """Sends the authenticated user id in the header the upstream proxy would set"""

    TIMEOUT_SECONDS: float = 30.0
    USER_HEADER: str = "X-Authenticated-User"

    def __init__(
        self,
        base_url: str,
        user_id: str,
        transport: httpx.AsyncBaseTransport | None = None,
        user_header: str | None = None,
    ):
        if not user_id:
            raise ValueError("user_id is required")

        self._base_url = base_url.rstrip("/")
        self._user_id = user_id
        self._transport = transport
        self._user_header = user_header or self.USER_HEADER
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> TriageQueueClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self.TIMEOUT_SECONDS),
            headers={self._user_header: self._user_id},
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self._client:
            raise RuntimeError("Client not initialized; use async context manager")

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TriageAPIError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise TriageAPIError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise TriageAPIError(str(detail), status_code=response.status_code)
        return response.json()

    async def list_issues(self, repo_id: str | None = None, state: str = "open") -> list[dict]:
        params = {"state": state}
        if repo_id is not None:
            params["repo_id"] = repo_id
        return await self._request("GET", "/issues", params=params)

    async def patch_issue(self, issue_id: str, payload: dict, batch: bool = False) -> dict:
        body = dict(payload)
        if batch:
            body["batch"] = True
        return await self._request("PATCH", f"/issues/{issue_id}", json=body)

    async def pending_count(self) -> int:
        data = await self._request("GET", "/batch/pending-count")
        return int(data["count"])

    async def push_batch(self) -> dict:
        return await self._request("POST", "/batch/push")

    async def sync(self, repo_id: str | None = None) -> dict:
        return await self._request("POST", "/sync", json={"repo_id": repo_id})
