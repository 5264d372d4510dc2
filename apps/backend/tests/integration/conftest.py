"""Route-level fixtures: the app with identity and session dependencies overridden."""
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from tq_backend.api.dependencies import get_db
from tq_backend.main import app
from tq_backend.middleware.auth import require_user_id


@pytest.fixture
def client():
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def route_db():
    db = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def authenticated_client(client, user_id, route_db):
    """Client with the trusted-header identity and database session overridden."""
    app.dependency_overrides[require_user_id] = lambda: user_id
    app.dependency_overrides[get_db] = lambda: route_db
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def unauthenticated_client(client, route_db):
    """Real identity dependency; only the session is replaced."""
    app.dependency_overrides[get_db] = lambda: route_db
    yield client
    app.dependency_overrides.clear()
