"""
E2E test fixtures for mongo-dump-stream.

These tests require a running MongoDB reachable at MONGO_URI.
"""

import os
import uuid

import pytest
import pytest_asyncio

from dumpstream.store.mongo import MongoDocumentStore

# Skip E2E tests if not in E2E mode
E2E_ENABLED = os.environ.get("DUMPSTREAM_E2E_TESTS", "0") == "1"

pytestmark = pytest.mark.skipif(
    not E2E_ENABLED,
    reason="E2E tests disabled. Set DUMPSTREAM_E2E_TESTS=1 to enable.",
)


@pytest.fixture
def mongo_uri() -> str:
    """MongoDB connection string."""
    return os.environ.get("MONGO_URI", "mongodb://localhost:27017")


@pytest.fixture
def database_name() -> str:
    """Generate unique database name for test isolation."""
    return f"dumpstream_e2e_{uuid.uuid4().hex[:8]}"


@pytest_asyncio.fixture
async def mongo_store(mongo_uri, database_name):
    """Store over a fresh database, dropped afterwards."""
    store = await MongoDocumentStore.connect(mongo_uri, database=database_name)
    yield store
    await store._client.drop_database(database_name)
    await store.close()
