"""
Shared fixtures: an in-memory sync database, an embedded Qdrant index and
a dict-backed version store.
"""

import pytest
import pytest_asyncio
from qdrant_client import QdrantClient

from core.embeddings.hashing import HashingEmbedder
from core.models.config import QdrantConfig
from core.sources.memory import InMemoryVersionStore
from core.storage.client import QdrantIndexStore
from core.storage.database import SyncDatabase

TEST_DIMENSIONS = 64


@pytest_asyncio.fixture
async def database():
    db = SyncDatabase(":memory:")
    await db.connect()
    try:
        yield db
    finally:
        await db.close()


@pytest.fixture
def embedder():
    return HashingEmbedder(dimensions=TEST_DIMENSIONS)


@pytest.fixture
def version_store():
    return InMemoryVersionStore()


@pytest_asyncio.fixture
async def index_store(embedder):
    config = QdrantConfig(url=":memory:", collection_name="test-novel", vector_size=TEST_DIMENSIONS)
    store = QdrantIndexStore(config, embedder, client=QdrantClient(location=":memory:"))
    result = await store.ensure_collection()
    assert result.success, result.error
    try:
        yield store
    finally:
        await store.disconnect()
