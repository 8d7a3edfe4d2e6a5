"""
Storage models for the vector index and operation results.

Handles index documents, search results, and operation tracking.
"""

import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from .entities import EntityType


class DocumentStatus(Enum):
    """Lifecycle state of an index document"""
    ACTIVE = "ACTIVE"
    DEPRECATED = "DEPRECATED"


class DocumentSource:
    """Origin of a search result document"""
    VECTOR = "vector"
    FALLBACK = "fallback"


def document_id(
    entity_type: EntityType,
    entity_id: int,
    version: int,
    chunk_index: Optional[int] = None
) -> str:
    """Build the index document id for an entity version (and chunk)"""
    base = f"{EntityType.parse(entity_type).value}-{entity_id}-v{version}"
    if chunk_index is None:
        return base
    return f"{base}-chunk-{chunk_index}"


def fallback_document_id(entity_type: EntityType, entity_id: int) -> str:
    """Build the id of a document synthesized from the system-of-record"""
    return f"{EntityType.parse(entity_type).value}-{entity_id}-fallback"


def epoch_millis(moment: Optional[datetime] = None) -> int:
    """Milliseconds since the epoch, used for ``last_modified`` payloads"""
    if moment is None:
        return int(time.time() * 1000)
    return int(moment.timestamp() * 1000)


class DocumentMetadata(BaseModel):
    """Metadata attached to every index document"""
    model_config = ConfigDict(use_enum_values=False)

    entity_type: EntityType
    entity_id: int
    version: int = Field(ge=0)
    status: DocumentStatus = DocumentStatus.ACTIVE
    last_modified: int = Field(default_factory=epoch_millis)

    # Chunking
    chunk_index: Optional[int] = Field(default=None, ge=0)
    total_chunks: Optional[int] = Field(default=None, ge=1)

    # Scope and display
    project_id: Optional[int] = None
    title: Optional[str] = None

    @field_validator('entity_type', mode='before')
    @classmethod
    def parse_entity_type(cls, v):
        return EntityType.parse(v)

    def to_payload(self) -> Dict[str, Any]:
        """Flatten into a Qdrant payload (enum values, no empty fields)"""
        payload: Dict[str, Any] = {
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "version": self.version,
            "status": self.status.value,
            "last_modified": self.last_modified,
        }
        if self.chunk_index is not None:
            payload["chunk_index"] = self.chunk_index
            payload["total_chunks"] = self.total_chunks
        if self.project_id is not None:
            payload["project_id"] = self.project_id
        if self.title:
            payload["title"] = self.title
        return payload


class IndexDocument(BaseModel):
    """A chunk of entity text tagged with identity and version metadata"""
    id: str
    text: str
    metadata: DocumentMetadata

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('Document id cannot be empty')
        return v

    @classmethod
    def for_chunk(
        cls,
        text: str,
        metadata: DocumentMetadata
    ) -> 'IndexDocument':
        """Create a document whose id is derived from its metadata"""
        return cls(
            id=document_id(
                metadata.entity_type,
                metadata.entity_id,
                metadata.version,
                metadata.chunk_index
            ),
            text=text,
            metadata=metadata
        )

    def to_payload(self) -> Dict[str, Any]:
        payload = self.metadata.to_payload()
        payload["doc_id"] = self.id
        payload["text"] = self.text
        return payload


class Document(BaseModel):
    """
    A search result document.

    ``metadata`` is the raw payload as stored in the index: its version
    fields are a claim that has not been checked against the system-of-record.
    """
    id: str
    text: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    score: Optional[float] = None
    source: str = DocumentSource.VECTOR

    @property
    def is_fallback(self) -> bool:
        return self.source == DocumentSource.FALLBACK

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        score: Optional[float] = None
    ) -> 'Document':
        """Build a result from a stored Qdrant payload"""
        metadata = {k: v for k, v in payload.items() if k not in ("doc_id", "text")}
        return cls(
            id=str(payload.get("doc_id", "")),
            text=payload.get("text") or "",
            metadata=metadata,
            score=score
        )


class StorageResult(BaseModel):
    """Result of storage operations with detailed metrics"""
    model_config = ConfigDict(
        json_encoders={
            datetime: lambda v: v.isoformat()
        }
    )

    # Operation details
    operation: str  # upsert, delete, update, create_collection
    collection_name: str
    success: bool

    # Performance metrics
    processing_time_ms: float
    affected_count: int = 0
    total_count: int = 0

    # Error handling
    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    warnings: List[str] = Field(default_factory=list)

    # Timestamps
    started_at: datetime = Field(default_factory=datetime.now)

    @field_validator('operation')
    @classmethod
    def validate_operation(cls, v: str) -> str:
        """Validate operation type"""
        valid_ops = {
            'upsert', 'update', 'delete', 'search', 'count',
            'create_collection', 'delete_collection'
        }
        if v.lower() not in valid_ops:
            raise ValueError(f'Invalid operation: {v}')
        return v.lower()

    @field_validator('collection_name')
    @classmethod
    def validate_collection_name(cls, v: str) -> str:
        """Validate collection name format"""
        if not v or not v.replace('-', '').replace('_', '').isalnum():
            raise ValueError('Collection name must be alphanumeric with dashes/underscores')
        return v.lower()

    @property
    def throughput_per_second(self) -> float:
        """Calculate processing throughput"""
        if self.processing_time_ms <= 0:
            return 0.0
        return (self.total_count * 1000) / self.processing_time_ms

    @classmethod
    def successful(
        cls,
        operation: str,
        collection_name: str,
        count: int,
        processing_time_ms: float
    ) -> 'StorageResult':
        """Create successful operation result"""
        return cls(
            operation=operation,
            collection_name=collection_name,
            success=True,
            processing_time_ms=processing_time_ms,
            affected_count=count,
            total_count=count
        )

    @classmethod
    def failed_operation(
        cls,
        operation: str,
        collection_name: str,
        error: str,
        processing_time_ms: float,
        error_details: Optional[Dict[str, Any]] = None
    ) -> 'StorageResult':
        """Create failed operation result"""
        return cls(
            operation=operation,
            collection_name=collection_name,
            success=False,
            processing_time_ms=processing_time_ms,
            error=error,
            error_details=error_details
        )
