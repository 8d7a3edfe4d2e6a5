"""
Storage package for novel-vector-sync.

Provides the Qdrant index store and the SQLite database behind the event
log and task queue.
"""

from .client import QdrantIndexStore
from .database import SyncDatabase
from .filters import build_filter
from .utils import document_id_to_point_id

__all__ = [
    "QdrantIndexStore",
    "SyncDatabase",
    "build_filter",
    "document_id_to_point_id",
]
