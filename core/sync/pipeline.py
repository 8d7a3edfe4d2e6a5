"""
Versioned vectorization pipeline.

Turns one (entity, operation, version) target into index writes:
deprecate older versions, fetch canonical text, chunk, tag, and upsert.
Older versions are never deleted here; the hourly purge removes them once
they have been deprecated long enough. Documents of an entity that no longer
exists are deleted outright.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..models.config import ChunkingConfig
from ..models.entities import EntitySnapshot, EntityType, VectorStatus
from ..models.storage import DocumentMetadata, DocumentStatus, IndexDocument, StorageResult, epoch_millis
from ..sources.base import VersionStore
from ..storage.client import QdrantIndexStore
from .chunking import split_content
from .errors import ContentUnavailableError, IndexWriteError
from .events import SyncOperation
from .inflight import InFlightRegistry, inflight_key

logger = logging.getLogger(__name__)


class SyncOutcome(Enum):
    """Result of a successful pipeline run"""
    INDEXED = "indexed"
    DELETED = "deleted"
    NO_CONTENT = "no_content"   # Missing entity or empty content
    STALE = "stale"             # A newer version exists; nothing written
    SKIPPED = "skipped"         # Same target already in flight


@dataclass
class PipelineMetrics:
    """Counters for pipeline runs"""
    runs: int = 0
    documents_written: int = 0
    outcomes: Dict[SyncOutcome, int] = field(default_factory=dict)
    failures: int = 0

    def record(self, outcome: SyncOutcome, written: int = 0) -> None:
        self.runs += 1
        self.documents_written += written
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runs": self.runs,
            "failures": self.failures,
            "documents_written": self.documents_written,
            "outcomes": {outcome.value: count for outcome, count in self.outcomes.items()}
        }


def build_documents(
    snapshot: EntitySnapshot,
    content: str,
    version: int,
    chunking: ChunkingConfig
) -> List[IndexDocument]:
    """Chunk content and tag every chunk with identity, version and ACTIVE status"""
    chunks = split_content(content, chunking.chunk_size, chunking.chunk_overlap)
    now_ms = epoch_millis()
    chunked = len(chunks) > 1

    documents = []
    for index, chunk in enumerate(chunks):
        metadata = DocumentMetadata(
            entity_type=snapshot.entity_type,
            entity_id=snapshot.entity_id,
            version=version,
            status=DocumentStatus.ACTIVE,
            last_modified=now_ms,
            chunk_index=index if chunked else None,
            total_chunks=len(chunks) if chunked else None,
            project_id=snapshot.project_id,
            title=snapshot.title
        )
        documents.append(IndexDocument.for_chunk(chunk, metadata))
    return documents


class VectorizationPipeline:
    """Vectorizes entity versions into the index"""

    def __init__(
        self,
        index: QdrantIndexStore,
        version_store: VersionStore,
        chunking: Optional[ChunkingConfig] = None,
        inflight: Optional[InFlightRegistry] = None
    ):
        self.index = index
        self.version_store = version_store
        self.chunking = chunking or ChunkingConfig()
        self.inflight = inflight or InFlightRegistry()
        self.metrics = PipelineMetrics()

    async def sync(
        self,
        entity_type: EntityType,
        entity_id: int,
        operation: SyncOperation,
        version: Optional[int] = None
    ) -> SyncOutcome:
        """
        Bring the index in line with one entity target.

        Raises:
            IndexWriteError: The index rejected a write (transient)
            ValueError: A non-DELETE operation without a target version
        """
        entity_type = EntityType.parse(entity_type)
        key = inflight_key(entity_type, entity_id, version)

        with self.inflight.hold(key) as acquired:
            if not acquired:
                logger.debug(f"Skipping {key}: already being vectorized")
                self.metrics.record(SyncOutcome.SKIPPED)
                return SyncOutcome.SKIPPED

            try:
                if operation == SyncOperation.DELETE:
                    outcome, written = await self._delete(entity_type, entity_id), 0
                else:
                    if version is None:
                        raise ValueError(f"{operation.value} requires a target version")
                    outcome, written = await self._index(entity_type, entity_id, version)
            except Exception as e:
                self.metrics.failures += 1
                if operation != SyncOperation.DELETE:
                    await self._report_status(entity_type, entity_id, VectorStatus.FAILED, str(e))
                raise

        self.metrics.record(outcome, written)
        return outcome

    async def _delete(self, entity_type: EntityType, entity_id: int) -> SyncOutcome:
        result = await self.index.delete_by_filter({
            "entity_type": entity_type.value,
            "entity_id": entity_id,
        })
        self._raise_on_failure(result)

        logger.info(f"Deleted {result.affected_count} documents for {entity_type.value}:{entity_id}")
        return SyncOutcome.DELETED

    async def _index(self, entity_type: EntityType, entity_id: int, version: int):
        label = f"{entity_type.value}:{entity_id}"

        # Phase one of the two-phase removal: older versions stay searchable
        # (and get filtered on read) until the new version is written
        result = await self.index.mark_deprecated(entity_type, entity_id, below_version=version)
        self._raise_on_failure(result)

        snapshot = await self.version_store.get_snapshot(entity_type, entity_id)
        if snapshot is None:
            # The entity is gone even if its DELETE event never arrived
            result = await self.index.delete_by_filter({
                "entity_type": entity_type.value,
                "entity_id": entity_id,
            })
            self._raise_on_failure(result)
            logger.info(
                f"{label} no longer exists; removed {result.affected_count} "
                f"orphaned documents instead of indexing v{version}"
            )
            return SyncOutcome.NO_CONTENT, 0

        if snapshot.version > version:
            logger.info(f"{label} is at v{snapshot.version}; skipping stale v{version}")
            return SyncOutcome.STALE, 0

        try:
            content = await self.version_store.get_content(entity_type, entity_id)
        except ContentUnavailableError as e:
            logger.warning(f"{label} content unavailable, nothing to index: {e}")
            return SyncOutcome.NO_CONTENT, 0

        if not content or not content.strip():
            logger.debug(f"{label} has empty content; nothing to index")
            return SyncOutcome.NO_CONTENT, 0

        await self._report_status(entity_type, entity_id, VectorStatus.INDEXING)

        documents = build_documents(snapshot, content, version, self.chunking)
        result = await self.index.upsert(documents)
        self._raise_on_failure(result)

        await self._supersede_if_newer(entity_type, entity_id, version)
        await self._report_status(entity_type, entity_id, VectorStatus.INDEXED)

        logger.info(f"Indexed {label} v{version} as {len(documents)} document(s)")
        return SyncOutcome.INDEXED, len(documents)

    async def _supersede_if_newer(self, entity_type: EntityType, entity_id: int, version: int) -> None:
        """
        Deprecate our own write if a newer version landed while we were working.

        Covers the race where a newer task deprecated older documents before
        this (older) task finished writing.
        """
        newest = await self.index.newest_active_version(entity_type, entity_id)
        if newest is not None and newest > version:
            logger.info(
                f"{entity_type.value}:{entity_id} v{newest} is already indexed; "
                f"deprecating v{version}"
            )
            result = await self.index.mark_deprecated(entity_type, entity_id, below_version=newest)
            self._raise_on_failure(result)

    async def _report_status(
        self,
        entity_type: EntityType,
        entity_id: int,
        status: VectorStatus,
        error: Optional[str] = None
    ) -> None:
        try:
            await self.version_store.update_vector_status(entity_type, entity_id, status, error)
        except Exception as e:
            # Status is informational; a failure to record it must not fail the sync
            logger.warning(f"Failed to record vector status for {entity_type.value}:{entity_id}: {e}")

    def _raise_on_failure(self, result: StorageResult) -> None:
        if not result.success:
            raise IndexWriteError(result.error or f"{result.operation} failed")
