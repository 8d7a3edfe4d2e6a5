"""
In-memory version store.

Keeps entities in a dict and bumps versions on every content change. Used
for local runs and tests; production deployments implement VersionStore
against their relational system-of-record.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..models.entities import EntitySnapshot, EntityType, VectorStatus
from ..search.fallback import rank_by_keywords
from .base import FallbackMatch

logger = logging.getLogger(__name__)


@dataclass
class StoredEntity:
    entity_type: EntityType
    entity_id: int
    version: int
    content: str
    project_id: Optional[int] = None
    title: Optional[str] = None
    vector_status: VectorStatus = VectorStatus.NOT_INDEXED
    vector_error: Optional[str] = None

    def snapshot(self) -> EntitySnapshot:
        return EntitySnapshot(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            version=self.version,
            project_id=self.project_id,
            title=self.title
        )

    @property
    def searchable_text(self) -> str:
        if self.title:
            return f"{self.title}\n{self.content}"
        return self.content


class InMemoryVersionStore:
    """Dict-backed VersionStore implementation"""

    def __init__(self):
        self._entities: Dict[Tuple[EntityType, int], StoredEntity] = {}

    def put(
        self,
        entity_type: EntityType,
        entity_id: int,
        content: str,
        project_id: Optional[int] = None,
        title: Optional[str] = None
    ) -> EntitySnapshot:
        """Create an entity at version 1, or change it and bump its version"""
        entity_type = EntityType.parse(entity_type)
        key = (entity_type, entity_id)
        existing = self._entities.get(key)

        if existing is None:
            self._entities[key] = StoredEntity(
                entity_type=entity_type,
                entity_id=entity_id,
                version=1,
                content=content,
                project_id=project_id,
                title=title
            )
        else:
            existing.version += 1
            existing.content = content
            if project_id is not None:
                existing.project_id = project_id
            if title is not None:
                existing.title = title

        return self._entities[key].snapshot()

    def remove(self, entity_type: EntityType, entity_id: int) -> bool:
        return self._entities.pop((EntityType.parse(entity_type), entity_id), None) is not None

    def vector_status(self, entity_type: EntityType, entity_id: int) -> Optional[VectorStatus]:
        entity = self._get(entity_type, entity_id)
        return entity.vector_status if entity else None

    def _get(self, entity_type: EntityType, entity_id: int) -> Optional[StoredEntity]:
        return self._entities.get((EntityType.parse(entity_type), entity_id))

    async def get_current_version(self, entity_type: EntityType, entity_id: int) -> Optional[int]:
        entity = self._get(entity_type, entity_id)
        return entity.version if entity else None

    async def get_content(self, entity_type: EntityType, entity_id: int) -> str:
        entity = self._get(entity_type, entity_id)
        return entity.content if entity else ""

    async def exists(self, entity_type: EntityType, entity_id: int) -> bool:
        return self._get(entity_type, entity_id) is not None

    async def get_snapshot(self, entity_type: EntityType, entity_id: int) -> Optional[EntitySnapshot]:
        entity = self._get(entity_type, entity_id)
        return entity.snapshot() if entity else None

    async def find_by_keyword(self, project_id: int, query: str, limit: int) -> List[FallbackMatch]:
        candidates = [
            (entity, entity.searchable_text)
            for entity in self._entities.values()
            if entity.project_id == project_id
        ]
        ranked = rank_by_keywords(query, candidates, limit)
        return [
            FallbackMatch(snapshot=entity.snapshot(), text=entity.content, score=score)
            for entity, _, score in ranked
        ]

    async def update_vector_status(
        self,
        entity_type: EntityType,
        entity_id: int,
        status: VectorStatus,
        error: Optional[str] = None
    ) -> None:
        entity = self._get(entity_type, entity_id)
        if entity is None:
            return
        entity.vector_status = status
        entity.vector_error = error
        logger.debug(f"{entity_type}:{entity_id} vector status -> {status.value}")

    def __len__(self) -> int:
        return len(self._entities)
