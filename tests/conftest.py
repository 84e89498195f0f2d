"""
tests/conftest.py -- Shared test fixtures for lifecycle API integration tests.

This module provides:
  - _make_test_store(): creates an isolated in-memory PortfolioStore
  - _patch_lifespan(): wires the test store into app.state, bypassing real startup
  - api_client: TestClient plus the store behind it, for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.
"""

from __future__ import annotations

import asyncio
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from core.config import Settings
from portfolio.store import PortfolioStore

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> PortfolioStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'health').
    """
    return PortfolioStore(db_url=f"sqlite:///file:test_lifecycle_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: PortfolioStore, settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    The feed cache is a MagicMock that always misses, so refreshes go to the
    (patched) fetcher. The purge_task is a long-sleeping coroutine that keeps
    asyncio happy (a real asyncio.Task is required; MagicMock would fail on
    .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        cache = MagicMock()
        cache.get.return_value = None
        app.state.settings = settings
        app.state.store = store
        app.state.cache = cache
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, PortfolioStore], None, None]:
    """Yield (client, store) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    """
    store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    app.router.lifespan_context = _patch_lifespan(store, Settings())
    limiter.reset()

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store

    store.close()
