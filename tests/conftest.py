"""
Pytest configuration and fixtures

Shared fixtures for all tests. HTTP is served by httpx.MockTransport,
sleeps are replaced by an AsyncMock so waits can be asserted without
actually waiting.
"""

from typing import Callable
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from graphsnap.core.graph_client import GraphClient
from graphsnap.core.rate_limiter import RateUsageTracker
from graphsnap.storage.database import Database

API_HOST = "https://graph.test/v1"
TOKEN = "TEST_TOKEN"


@pytest.fixture
def no_sleep():
    """Replace asyncio.sleep and record requested waits."""
    with patch("asyncio.sleep", new_callable=AsyncMock) as mocked:
        yield mocked


def slept(mocked: AsyncMock) -> list:
    """Durations passed to a mocked asyncio.sleep."""
    return [call.args[0] for call in mocked.await_args_list]


def api_path(request: httpx.Request) -> str:
    """Request path relative to the API version prefix."""
    return request.url.path[len("/v1/"):]


@pytest.fixture
def make_client() -> Callable[..., GraphClient]:
    """Factory for a GraphClient served by a request handler."""

    def factory(handler=None, **kwargs) -> GraphClient:
        kwargs.setdefault("access_token", TOKEN)
        kwargs.setdefault("api_host", API_HOST)
        kwargs.setdefault("rate_tracker", RateUsageTracker(min_delay=0))
        if handler is not None:
            kwargs["transport"] = httpx.MockTransport(handler)
        return GraphClient(**kwargs)

    return factory


@pytest.fixture
async def database(tmp_path):
    """Temporary SQLite database with all tables."""
    db = Database(f"sqlite:///{tmp_path / 'test.db'}")
    await db.init()
    yield db
    await db.close()
