"""
novel-vector-sync core package

Keeps a vector index consistent with a versioned system-of-record.
"""

__version__ = "1.0.0"

from .models import EntitySnapshot, EntityType, StorageResult, SyncSettings

__all__ = [
    "EntitySnapshot",
    "EntityType",
    "StorageResult",
    "SyncSettings",
]
