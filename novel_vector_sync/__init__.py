"""
Novel Vector Sync - keeps a semantic index consistent with a versioned store.

Tracks changes to projects, chapters, characters, plots and world settings,
turns them into deduplicated (re)indexing tasks, vectorizes each version
into Qdrant, and filters stale results out of every search.
"""

__version__ = "1.0.0"

from core.models.config import SyncSettings, QdrantConfig
from core.models.entities import EntityType, EntitySnapshot
from core.sync.engine import VectorSyncEngine
from core.sources.memory import InMemoryVersionStore

__all__ = [
    "SyncSettings",
    "QdrantConfig",
    "EntityType",
    "EntitySnapshot",
    "VectorSyncEngine",
    "InMemoryVersionStore",
    "__version__",
]
