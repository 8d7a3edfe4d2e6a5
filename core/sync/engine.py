"""
Vector Sync Engine.

Central coordinator that wires the change event log, task queue, intake
channel, vectorization pipeline, periodic scheduler and consistency-aware
search around one system-of-record.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from qdrant_client import QdrantClient

from ..embeddings.base import BaseEmbedder
from ..embeddings.hashing import HashingEmbedder
from ..models.config import SyncSettings
from ..models.entities import EntityType
from ..models.storage import Document
from ..search.consistency import ConsistentSearchService
from ..sources.base import VersionStore
from ..storage.client import QdrantIndexStore
from ..storage.database import SyncDatabase
from .errors import SyncError
from .event_log import ChangeEventLog
from .events import ChangeEvent, ChangeKind
from .inflight import InFlightRegistry
from .intake import ChangeIntake
from .pipeline import VectorizationPipeline
from .processor import DrainResult, TaskProcessor
from .queue import ChangeEventChannel
from .retry import RetryPolicy
from .scheduler import SyncScheduler
from .task_queue import SyncTaskQueue

logger = logging.getLogger(__name__)


class VectorSyncEngine:
    """
    Keeps a vector index eventually consistent with a versioned store.

    Usage::

        async with VectorSyncEngine(settings, store) as engine:
            await engine.notify_update(EntityType.CHAPTER, 42, version=3, project_id=1)
            results = await engine.search("the lighthouse keeper", project_id=1)
    """

    def __init__(
        self,
        settings: SyncSettings,
        version_store: VersionStore,
        embedder: Optional[BaseEmbedder] = None,
        qdrant_client: Optional[QdrantClient] = None,
        run_scheduler: bool = True
    ):
        """
        Args:
            settings: Engine configuration
            version_store: System-of-record adapter
            embedder: Embedder for chunks and queries (feature hashing by default)
            qdrant_client: Pre-built Qdrant client, mainly for tests
            run_scheduler: Start the periodic jobs and the intake consumer on
                ``start()``; when False, call ``run_drain_once`` to make progress
        """
        self.settings = settings
        self.version_store = version_store
        self.run_scheduler = run_scheduler

        self.embedder = embedder or HashingEmbedder(dimensions=settings.qdrant.vector_size)
        self.database = SyncDatabase(settings.database.path)
        self.index = QdrantIndexStore(settings.qdrant, self.embedder, client=qdrant_client)

        self.event_log = ChangeEventLog(self.database)
        self.task_queue = SyncTaskQueue(self.database)
        self.channel = ChangeEventChannel(
            max_size=settings.scheduler.channel_max_size,
            max_batch_size=settings.scheduler.channel_batch_size
        )
        self.retry_policy = RetryPolicy.from_config(settings.retry)

        self.pipeline = VectorizationPipeline(
            self.index,
            version_store,
            chunking=settings.chunking,
            inflight=InFlightRegistry(ttl_seconds=settings.scheduler.task_timeout_seconds)
        )
        self.processor = TaskProcessor(self.task_queue, self.pipeline, self.retry_policy)
        self.intake = ChangeIntake(self.event_log, self.task_queue, self.channel, self.processor)
        self.scheduler = SyncScheduler(
            settings.scheduler,
            settings.retention,
            self.task_queue,
            self.event_log,
            self.processor,
            self.intake,
            self.index,
            retry_policy=self.retry_policy
        )
        self.search_service = ConsistentSearchService(self.index, version_store)

        self._running = False
        self._start_time: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Open storage, make sure the collection exists and start background work.

        Raises:
            SyncError: The collection could not be created
        """
        if self._running:
            logger.warning("VectorSyncEngine is already running")
            return

        logger.info("Starting VectorSyncEngine...")
        await self.database.connect()

        result = await self.index.ensure_collection()
        if not result.success:
            await self.database.close()
            raise SyncError(f"Cannot start: {result.error}")

        await self.channel.start()
        if self.run_scheduler:
            await self.intake.start()
            await self.scheduler.start()

        self._running = True
        self._start_time = datetime.now()
        logger.info("VectorSyncEngine started")

    async def stop(self) -> None:
        if not self._running:
            return

        logger.info("Stopping VectorSyncEngine...")
        await self.scheduler.stop()
        await self.intake.stop()
        await self.channel.stop()
        await self.index.disconnect()
        await self.database.close()

        self._running = False
        logger.info("VectorSyncEngine stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    # Write-path notifications

    async def notify_change(
        self,
        entity_type: EntityType,
        entity_id: int,
        change_kind: ChangeKind,
        version: int,
        urgent: bool = False,
        project_id: Optional[int] = None
    ) -> Optional[ChangeEvent]:
        return await self.intake.notify_change(
            entity_type, entity_id, change_kind, version,
            urgent=urgent, project_id=project_id
        )

    async def notify_create(self, entity_type: EntityType, entity_id: int,
                            project_id: Optional[int] = None) -> Optional[ChangeEvent]:
        return await self.intake.notify_create(entity_type, entity_id, project_id=project_id)

    async def notify_update(self, entity_type: EntityType, entity_id: int, version: int,
                            project_id: Optional[int] = None, old_content: Optional[str] = None,
                            new_content: Optional[str] = None,
                            urgent: bool = False) -> Optional[ChangeEvent]:
        return await self.intake.notify_update(
            entity_type, entity_id, version, project_id=project_id,
            old_content=old_content, new_content=new_content, urgent=urgent
        )

    async def notify_delete(self, entity_type: EntityType, entity_id: int, version: int = 0,
                            project_id: Optional[int] = None) -> Optional[ChangeEvent]:
        return await self.intake.notify_delete(entity_type, entity_id, version, project_id=project_id)

    async def notify_batch(self, events: List[ChangeEvent]) -> List[int]:
        return await self.intake.notify_batch(events)

    # Reads and manual operations

    async def search(self, query: str, top_k: int = 5, project_id: Optional[int] = None) -> List[Document]:
        return await self.search_service.search(query, top_k=top_k, project_id=project_id)

    async def run_drain_once(self) -> DrainResult:
        """Derive tasks for queued events, then drain one batch"""
        while await self.intake.consume_once(timeout=0):
            pass
        return await self.processor.drain_once(self.settings.scheduler.batch_size)

    async def requeue(self, task_id: int) -> bool:
        return await self.task_queue.requeue(task_id)

    async def get_status(self) -> Dict[str, Any]:
        counts = await self.task_queue.count_by_status()
        uptime = (datetime.now() - self._start_time).total_seconds() if self._start_time else 0.0

        return {
            "running": self._running,
            "uptime_seconds": uptime,
            "tasks": {status.value: count for status, count in counts.items()},
            "unprocessed_events": await self.event_log.count_unprocessed(),
            "intake": self.intake.get_stats(),
            "channel": self.channel.get_metrics(),
            "pipeline": self.pipeline.metrics.to_dict(),
            "inflight": self.pipeline.inflight.get_stats(),
            "search": self.search_service.metrics.to_dict(),
            "indexed_documents": await self.index.count(),
            "embedder": self.embedder.get_model_info(),
            "jobs": self.scheduler.get_status()
        }
