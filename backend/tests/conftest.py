# backend/tests/conftest.py
import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

# Add backend root to PYTHONPATH
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from database import PrimaryStore  # noqa: E402
from errors import PrimaryStoreError, SecondaryStoreError  # noqa: E402


def make_engine():
    """One shared in-memory SQLite connection per engine"""
    return create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)


class RecordingSecondary:
    """Secondary store that keeps every insert and serves canned aggregates"""

    def __init__(self, aggregate_rows=None):
        self.inserted = []
        self.aggregate_rows = aggregate_rows or []
        self.queries = []

    async def insert(self, table, rows):
        self.inserted.extend((table, dict(row)) for row in rows)

    async def aggregate(self, query):
        self.queries.append(query)
        return list(self.aggregate_rows)

    async def ping(self):
        return None

    async def create_tables(self):
        return None

    async def close(self):
        return None


class FailingSecondary(RecordingSecondary):
    """Secondary store that is down"""

    async def insert(self, table, rows):
        raise SecondaryStoreError("connection refused")

    async def aggregate(self, query):
        raise SecondaryStoreError("connection refused")

    async def ping(self):
        raise SecondaryStoreError("connection refused")

    async def create_tables(self):
        raise SecondaryStoreError("connection refused")


class HangingSecondary(RecordingSecondary):
    """Secondary store that accepts the connection and never answers"""

    async def insert(self, table, rows):
        await asyncio.sleep(30)


class FailingPrimary(PrimaryStore):
    """Primary store whose writes always fail"""

    async def insert_rows(self, table, rows):
        raise PrimaryStoreError("could not connect to server: secret-host:5432")


@pytest_asyncio.fixture
async def primary():
    store = PrimaryStore(make_engine())
    await store.create_all()
    yield store
    await store.dispose()


@pytest.fixture
def client_factory():
    """Build a TestClient around a fresh SQLite primary store"""
    from main import create_app

    clients = []

    def _make(secondary=None, cache=None, primary_store=None):
        store = primary_store or PrimaryStore(make_engine())
        app = create_app(
            primary=store,
            secondary=secondary,
            cache=cache,
            use_secondary=secondary is not None,
            use_cache=cache is not None,
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        client.primary = store
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
