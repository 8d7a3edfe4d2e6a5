"""
Consistency-aware search.

Wraps raw similarity search with a read-side version check. Every hit's
claimed (entity_type, entity_id, version) is compared against the version
store; stale and orphaned hits are dropped, and a short result list is
topped up from the system-of-record by keyword match.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..models.entities import EntityType
from ..models.storage import Document, DocumentSource, DocumentStatus, fallback_document_id
from ..sources.base import VersionStore
from ..storage.client import QdrantIndexStore

logger = logging.getLogger(__name__)


@dataclass
class SearchMetrics:
    """Counters for consistency filtering"""
    searches: int = 0
    raw_hits: int = 0
    rejected_malformed: int = 0
    rejected_stale: int = 0
    rejected_orphaned: int = 0
    fallback_documents: int = 0
    vector_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


def parse_claim(metadata: Dict[str, Any]) -> Optional[Tuple[EntityType, int, int]]:
    """Extract the (entity_type, entity_id, version) claim; None if missing or malformed"""
    try:
        entity_type = EntityType.parse(metadata["entity_type"])
        entity_id = int(metadata["entity_id"])
        version = int(metadata["version"])
    except (KeyError, TypeError, ValueError):
        return None
    return entity_type, entity_id, version


def fallback_cap(top_k: int) -> int:
    """Fallback never contributes more than half the requested results"""
    return max(1, top_k // 2)


class ConsistentSearchService:
    """Similarity search that never serves stale or orphaned documents"""

    def __init__(self, index: QdrantIndexStore, version_store: VersionStore):
        self.index = index
        self.version_store = version_store
        self.metrics = SearchMetrics()

    async def search(
        self,
        query: str,
        top_k: int = 5,
        project_id: Optional[int] = None
    ) -> List[Document]:
        """
        Search the index and return only hits that match current versions.

        Args:
            query: Query text
            top_k: Maximum documents to return
            project_id: Optional project scope; also enables fallback fill

        Returns:
            Up to ``top_k`` documents; fallback documents carry ``source="fallback"``
        """
        if top_k <= 0 or not query or not query.strip():
            return []

        self.metrics.searches += 1
        conditions: Dict[str, Any] = {"status": DocumentStatus.ACTIVE.value}
        if project_id is not None:
            conditions["project_id"] = project_id

        try:
            raw = await self.index.similarity_search(query, top_k, conditions)
        except Exception as e:
            self.metrics.vector_failures += 1
            logger.error(f"Vector search failed, serving fallback only: {e}")
            if project_id is None:
                return []
            return await self._fallback(query, project_id, fallback_cap(top_k), set())

        self.metrics.raw_hits += len(raw)
        valid = await self.validate(raw)

        results = self._dedupe(valid)[:top_k]

        if len(results) < top_k and project_id is not None:
            represented = {
                (doc.metadata.get("entity_type"), doc.metadata.get("entity_id"))
                for doc in results
            }
            limit = min(top_k - len(results), fallback_cap(top_k))
            supplements = await self._fallback(query, project_id, limit, represented)
            results = self._dedupe(results + supplements)

        logger.debug(
            f"Search '{query}' (top_k={top_k}, project={project_id}): "
            f"{len(raw)} raw, {len(valid)} valid, {len(results)} returned"
        )
        return results[:top_k]

    async def validate(self, documents: List[Document]) -> List[Document]:
        """
        Keep only documents whose claimed version is the entity's current version.

        Current versions are looked up once per distinct entity.
        """
        current: Dict[Tuple[EntityType, int], Optional[int]] = {}
        valid = []

        for doc in documents:
            claim = parse_claim(doc.metadata)
            if claim is None:
                self.metrics.rejected_malformed += 1
                logger.debug(f"Rejected {doc.id or '<no id>'}: missing identity metadata")
                continue

            entity_type, entity_id, version = claim
            key = (entity_type, entity_id)
            if key not in current:
                current[key] = await self.version_store.get_current_version(entity_type, entity_id)

            current_version = current[key]
            if current_version is None:
                self.metrics.rejected_orphaned += 1
                logger.debug(f"Rejected {doc.id}: {entity_type.value}:{entity_id} no longer exists")
                continue

            if current_version != version:
                self.metrics.rejected_stale += 1
                logger.debug(f"Rejected {doc.id}: claims v{version}, current is v{current_version}")
                continue

            valid.append(doc)

        return valid

    async def _fallback(
        self,
        query: str,
        project_id: int,
        limit: int,
        represented: set
    ) -> List[Document]:
        if limit <= 0:
            return []

        try:
            # Over-fetch so entities already in the results can be skipped
            matches = await self.version_store.find_by_keyword(project_id, query, limit + len(represented))
        except Exception as e:
            logger.error(f"Fallback lookup failed for project {project_id}: {e}")
            return []

        documents = []
        for match in matches:
            snapshot = match.snapshot
            if (snapshot.entity_type.value, snapshot.entity_id) in represented:
                continue

            documents.append(Document(
                id=fallback_document_id(snapshot.entity_type, snapshot.entity_id),
                text=match.text,
                metadata={
                    "entity_type": snapshot.entity_type.value,
                    "entity_id": snapshot.entity_id,
                    "version": snapshot.version,
                    "project_id": snapshot.project_id,
                    "title": snapshot.title,
                    "source": DocumentSource.FALLBACK,
                },
                score=match.score,
                source=DocumentSource.FALLBACK
            ))
            if len(documents) >= limit:
                break

        self.metrics.fallback_documents += len(documents)
        if documents:
            logger.info(f"Fallback supplied {len(documents)} documents for project {project_id}")
        return documents

    def _dedupe(self, documents: List[Document]) -> List[Document]:
        seen = set()
        unique = []
        for doc in documents:
            if doc.id in seen:
                continue
            seen.add(doc.id)
            unique.append(doc)
        return unique
