"""
Entity models for the synchronizable domain objects.

Entities live in the relational system-of-record; this module only defines
the identity types and the read projection the sync engine consumes.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntityType(str, Enum):
    """Types of synchronizable entities"""
    PROJECT = "project"
    CHAPTER = "chapter"
    CHARACTER = "character"
    PLOT = "plot"
    WORLD = "world"

    @classmethod
    def parse(cls, value) -> 'EntityType':
        """Parse an entity type from its value or member name (case-insensitive)"""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value == text:
                return member
        raise ValueError(f"Unknown entity type: {value!r}")


class VectorStatus(Enum):
    """Vectorization state reported back to the system-of-record"""
    NOT_INDEXED = "NOT_INDEXED"
    INDEXING = "INDEXING"
    INDEXED = "INDEXED"
    FAILED = "FAILED"


def entity_key(entity_type: EntityType, entity_id: int) -> str:
    """Stable string key for an entity, e.g. ``chapter:42``"""
    return f"{EntityType.parse(entity_type).value}:{entity_id}"


class EntitySnapshot(BaseModel):
    """
    Read projection of an entity.

    Carries only the fields the pipeline and search need; collaborators
    select exactly these columns instead of loading the full row.
    """
    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    entity_id: int
    version: int = Field(ge=0)
    project_id: Optional[int] = None
    title: Optional[str] = None

    @field_validator('entity_type', mode='before')
    @classmethod
    def parse_entity_type(cls, v):
        return EntityType.parse(v)

    @property
    def key(self) -> str:
        return entity_key(self.entity_type, self.entity_id)

    def __str__(self) -> str:
        return f"{self.key}@v{self.version}"
