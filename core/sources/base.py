"""
Version store interface.

The version store is the system-of-record side of synchronization: it owns
each entity's authoritative version counter and canonical text. The sync
engine never trusts a version read from the index without checking it here.
"""

from dataclasses import dataclass
from typing import List, Optional, Protocol, runtime_checkable

from ..models.entities import EntitySnapshot, EntityType, VectorStatus


@dataclass(frozen=True)
class FallbackMatch:
    """An entity matched by keyword lookup, with the text to serve"""
    snapshot: EntitySnapshot
    text: str
    score: float = 0.0


@runtime_checkable
class VersionStore(Protocol):
    """Collaborator contract consumed by the pipeline and the search path"""

    async def get_current_version(self, entity_type: EntityType, entity_id: int) -> Optional[int]:
        """Current version, or None if the entity does not exist"""
        ...

    async def get_content(self, entity_type: EntityType, entity_id: int) -> str:
        """
        Canonical text used for embedding.

        Returns an empty string when there is nothing to index; may raise
        ContentUnavailableError for unreadable content.
        """
        ...

    async def exists(self, entity_type: EntityType, entity_id: int) -> bool:
        ...

    async def get_snapshot(self, entity_type: EntityType, entity_id: int) -> Optional[EntitySnapshot]:
        """Identity, version and scope projection, or None if missing"""
        ...

    async def find_by_keyword(self, project_id: int, query: str, limit: int) -> List[FallbackMatch]:
        """Entities of a project whose text matches ``query``, best first"""
        ...

    async def update_vector_status(
        self,
        entity_type: EntityType,
        entity_id: int,
        status: VectorStatus,
        error: Optional[str] = None
    ) -> None:
        """Record the entity's vectorization state"""
        ...
