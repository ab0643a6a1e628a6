"""Shared fixtures."""

from collections.abc import AsyncGenerator, Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.base import get_async_session


def make_mock_session() -> AsyncMock:
    """An AsyncSession double whose execute() returns an empty result."""
    session = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    result.scalars.return_value.all.return_value = []
    result.scalars.return_value.first.return_value = None
    result.all.return_value = []
    session.execute.return_value = result
    session.get.return_value = None
    session.add = MagicMock()
    return session


@pytest.fixture
def mock_session() -> AsyncMock:
    return make_mock_session()


@pytest.fixture
def client(mock_session: AsyncMock) -> Iterator[TestClient]:
    """TestClient with the database session replaced by ``mock_session``.

    Used without a ``with`` block so the lifespan (and the job scheduler)
    does not start.
    """

    async def _session() -> AsyncGenerator[AsyncMock, None]:
        yield mock_session

    app.dependency_overrides[get_async_session] = _session
    yield TestClient(app)
    app.dependency_overrides.clear()
