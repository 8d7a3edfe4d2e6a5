"""
Core data models for novel-vector-sync

Pydantic models for entities, index documents, and configuration.
"""

from .entities import EntityType, EntitySnapshot, VectorStatus, entity_key
from .storage import (
    Document, DocumentMetadata, DocumentSource, DocumentStatus,
    IndexDocument, StorageResult, document_id, fallback_document_id
)
from .config import SyncSettings, QdrantConfig, GlobalSettings

__all__ = [
    # Entities
    "EntityType",
    "EntitySnapshot",
    "VectorStatus",
    "entity_key",

    # Storage
    "Document",
    "DocumentMetadata",
    "DocumentSource",
    "DocumentStatus",
    "IndexDocument",
    "StorageResult",
    "document_id",
    "fallback_document_id",

    # Configuration
    "SyncSettings",
    "QdrantConfig",
    "GlobalSettings",
]
