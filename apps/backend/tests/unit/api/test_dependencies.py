"""Unit tests for shared route dependencies."""
from unittest.mock import MagicMock, patch

from tq_backend.api.dependencies import get_db


async def test_get_db_yields_shared_session():
    session = MagicMock(name="session")

    async def fake_sessions():
        yield session

    with patch("tq_backend.api.dependencies.get_async_session", fake_sessions):
        yielded = [s async for s in get_db()]

    assert yielded == [session]
