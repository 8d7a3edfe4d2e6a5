"""
Qdrant index store for novel-vector-sync.

Stores versioned entity chunks with metadata payloads, marks superseded
versions deprecated, and serves raw similarity search.
"""

import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Dict, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance, FilterSelector, PayloadSchemaType, PointStruct, VectorParams
)

from .filters import build_filter
from .utils import document_id_to_point_id
from ..embeddings.base import BaseEmbedder
from ..models.config import QdrantConfig
from ..models.entities import EntityType
from ..models.storage import (
    Document, DocumentStatus, IndexDocument, StorageResult, epoch_millis
)

logger = logging.getLogger(__name__)


DISTANCE_MAP = {
    "cosine": Distance.COSINE,
    "euclidean": Distance.EUCLID,
    "dot": Distance.DOT,
}

PAYLOAD_INDEXES = {
    "entity_type": PayloadSchemaType.KEYWORD,
    "entity_id": PayloadSchemaType.INTEGER,
    "version": PayloadSchemaType.INTEGER,
    "status": PayloadSchemaType.KEYWORD,
    "project_id": PayloadSchemaType.INTEGER,
    "last_modified": PayloadSchemaType.INTEGER,
}


class QdrantIndexStore:
    """
    Vector index over entity chunks.

    Write operations return StorageResult instead of raising; read
    operations log failures and return empty results.
    """

    def __init__(
        self,
        config: QdrantConfig,
        embedder: BaseEmbedder,
        client: Optional[QdrantClient] = None
    ):
        """
        Initialize the index store.

        Args:
            config: Qdrant connection and collection settings
            embedder: Embedder for document chunks and queries
            client: Pre-built client (mainly for tests); created lazily otherwise
        """
        self.config = config
        self.embedder = embedder
        self.collection_name = config.collection_name
        self._client = client
        self._connection_lock = asyncio.Lock()
        self._connected = False

        if config.vector_size != embedder.dimensions:
            logger.warning(
                f"Configured vector_size {config.vector_size} differs from embedder "
                f"dimensions {embedder.dimensions}; using the embedder's"
            )

        logger.info(f"Initialized QdrantIndexStore: {config.url} / {self.collection_name}")

    @property
    def client(self) -> QdrantClient:
        """Get Qdrant client instance"""
        if self._client is None:
            if self.config.is_local:
                self._client = QdrantClient(location=":memory:")
            else:
                self._client = QdrantClient(
                    url=self.config.url,
                    api_key=self.config.api_key,
                    timeout=int(self.config.timeout)
                )
        return self._client

    async def connect(self) -> bool:
        """Verify the server is reachable"""
        async with self._connection_lock:
            if self._connected:
                return True

            try:
                start_time = time.time()
                await asyncio.to_thread(self.client.get_collections)
                elapsed = time.time() - start_time

                self._connected = True
                logger.info(f"Connected to Qdrant in {elapsed:.3f}s")
                return True

            except Exception as e:
                logger.error(f"Failed to connect to Qdrant: {e}")
                self._connected = False
                return False

    async def disconnect(self) -> None:
        async with self._connection_lock:
            if self._client is not None:
                try:
                    self._client.close()
                except Exception as e:
                    logger.debug(f"Error closing Qdrant client: {e}")
                self._client = None

            self._connected = False
            logger.info("Disconnected from Qdrant")

    async def health_check(self) -> Dict[str, Any]:
        try:
            start_time = time.time()
            collections = await asyncio.to_thread(self.client.get_collections)
            elapsed = time.time() - start_time

            return {
                "status": "healthy",
                "response_time_ms": elapsed * 1000,
                "collections_count": len(collections.collections),
                "url": self.config.url
            }

        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "url": self.config.url
            }

    async def ensure_collection(self, recreate: bool = False) -> StorageResult:
        """Create the collection and its payload indexes if missing"""
        start_time = time.time()

        try:
            collections = await asyncio.to_thread(self.client.get_collections)
            exists = self.collection_name in [c.name for c in collections.collections]

            if exists and not recreate:
                return StorageResult.successful(
                    "create_collection", self.collection_name, 0,
                    (time.time() - start_time) * 1000
                )

            if exists:
                await asyncio.to_thread(self.client.delete_collection, self.collection_name)
                logger.info(f"Deleted existing collection: {self.collection_name}")

            await asyncio.to_thread(
                self.client.create_collection,
                collection_name=self.collection_name,
                vectors_config=VectorParams(
                    size=self.embedder.dimensions,
                    distance=DISTANCE_MAP[self.config.distance_metric]
                )
            )

            # Payload indexes have no effect on the embedded local instance
            if not self.config.is_local:
                await self._create_payload_indexes()

            processing_time = (time.time() - start_time) * 1000
            logger.info(f"Created collection '{self.collection_name}' in {processing_time:.2f}ms")

            return StorageResult.successful(
                "create_collection", self.collection_name, 1, processing_time
            )

        except Exception as e:
            processing_time = (time.time() - start_time) * 1000
            error_msg = f"Failed to create collection {self.collection_name}: {e}"
            logger.error(error_msg)

            return StorageResult.failed_operation(
                "create_collection", self.collection_name, error_msg, processing_time
            )

    async def _create_payload_indexes(self) -> None:
        for field_name, schema_type in PAYLOAD_INDEXES.items():
            try:
                await asyncio.to_thread(
                    self.client.create_payload_index,
                    collection_name=self.collection_name,
                    field_name=field_name,
                    field_schema=schema_type
                )
                logger.debug(f"Created {schema_type} index on {self.collection_name}.{field_name}")

            except Exception as e:
                logger.warning(
                    f"Failed to create index on {self.collection_name}.{field_name}: {e}"
                )

    async def upsert(self, documents: List[IndexDocument]) -> StorageResult:
        """
        Embed and write documents, overwriting any with the same id.

        Args:
            documents: Documents to write

        Returns:
            Storage operation result
        """
        start_time = time.time()
        total = len(documents)

        if not documents:
            return StorageResult.successful("upsert", self.collection_name, 0, 0)

        try:
            response = await self.embedder.embed_texts([doc.text for doc in documents])

            points = [
                PointStruct(
                    id=document_id_to_point_id(doc.id),
                    vector=vector,
                    payload=doc.to_payload()
                )
                for doc, vector in zip(documents, response.embeddings)
            ]

            batch_size = self.config.batch_size
            for i in range(0, len(points), batch_size):
                batch = points[i:i + batch_size]
                await asyncio.to_thread(
                    self.client.upsert,
                    collection_name=self.collection_name,
                    points=batch
                )
                logger.debug(
                    f"Upserted batch {i // batch_size + 1}: "
                    f"{len(batch)} points to {self.collection_name}"
                )

            processing_time = (time.time() - start_time) * 1000
            logger.info(
                f"Upserted {total} documents to {self.collection_name} "
                f"in {processing_time:.2f}ms"
            )

            return StorageResult.successful("upsert", self.collection_name, total, processing_time)

        except Exception as e:
            processing_time = (time.time() - start_time) * 1000
            error_msg = f"Failed to upsert documents to {self.collection_name}: {e}"
            logger.error(error_msg)

            return StorageResult.failed_operation(
                "upsert", self.collection_name, error_msg, processing_time,
                error_details={"total_documents": total}
            )

    async def delete_by_filter(self, conditions: Dict[str, Any]) -> StorageResult:
        """
        Delete documents matching filter conditions.

        Returns:
            Storage operation result with deletion count
        """
        start_time = time.time()

        try:
            search_filter = build_filter(conditions)
            if search_filter is None:
                return StorageResult.failed_operation(
                    "delete", self.collection_name,
                    "No valid filter conditions provided", 0
                )

            total_count = await self._count_or_raise(conditions)
            if total_count == 0:
                processing_time = (time.time() - start_time) * 1000
                return StorageResult.successful("delete", self.collection_name, 0, processing_time)

            await asyncio.to_thread(
                self.client.delete,
                collection_name=self.collection_name,
                points_selector=FilterSelector(filter=search_filter)
            )

            processing_time = (time.time() - start_time) * 1000
            logger.info(
                f"Deleted {total_count} documents from {self.collection_name} "
                f"in {processing_time:.2f}ms"
            )

            return StorageResult.successful("delete", self.collection_name, total_count, processing_time)

        except Exception as e:
            processing_time = (time.time() - start_time) * 1000
            error_msg = f"Failed to delete documents from {self.collection_name}: {e}"
            logger.error(error_msg)

            return StorageResult.failed_operation(
                "delete", self.collection_name, error_msg, processing_time
            )

    async def mark_deprecated(
        self,
        entity_type: EntityType,
        entity_id: int,
        below_version: int
    ) -> StorageResult:
        """
        Mark an entity's ACTIVE documents older than ``below_version`` DEPRECATED.

        ``last_modified`` is reset to now, so the purge retention window
        starts at deprecation time.
        """
        start_time = time.time()
        conditions = {
            "entity_type": EntityType.parse(entity_type).value,
            "entity_id": entity_id,
            "status": DocumentStatus.ACTIVE.value,
            "version": {"lt": below_version},
        }

        try:
            total_count = await self._count_or_raise(conditions)
            if total_count:
                await asyncio.to_thread(
                    self.client.set_payload,
                    collection_name=self.collection_name,
                    payload={
                        "status": DocumentStatus.DEPRECATED.value,
                        "last_modified": epoch_millis(),
                    },
                    points=FilterSelector(filter=build_filter(conditions))
                )
                logger.debug(
                    f"Deprecated {total_count} documents of "
                    f"{conditions['entity_type']}:{entity_id} below v{below_version}"
                )

            processing_time = (time.time() - start_time) * 1000
            return StorageResult.successful("update", self.collection_name, total_count, processing_time)

        except Exception as e:
            processing_time = (time.time() - start_time) * 1000
            error_msg = f"Failed to deprecate documents in {self.collection_name}: {e}"
            logger.error(error_msg)

            return StorageResult.failed_operation(
                "update", self.collection_name, error_msg, processing_time
            )

    async def purge_deprecated(self, older_than: timedelta) -> StorageResult:
        """Delete DEPRECATED documents whose ``last_modified`` is older than the window"""
        cutoff_ms = epoch_millis() - int(older_than.total_seconds() * 1000)
        return await self.delete_by_filter({
            "status": DocumentStatus.DEPRECATED.value,
            "last_modified": {"lt": cutoff_ms},
        })

    async def similarity_search(
        self,
        query: str,
        top_k: int = 10,
        conditions: Optional[Dict[str, Any]] = None
    ) -> List[Document]:
        """
        Raw vector similarity search.

        Args:
            query: Query text
            top_k: Maximum results to return
            conditions: Optional metadata filter

        Returns:
            Matching documents, best first; empty on failure
        """
        start_time = time.time()

        try:
            query_vector = await self.embedder.embed_single(query)

            response = await asyncio.to_thread(
                self.client.query_points,
                collection_name=self.collection_name,
                query=query_vector,
                query_filter=build_filter(conditions),
                limit=top_k,
                with_payload=True,
                with_vectors=False
            )

            results = [
                Document.from_payload(point.payload or {}, score=point.score)
                for point in response.points
            ]

            processing_time = (time.time() - start_time) * 1000
            logger.debug(
                f"Similarity search in {self.collection_name}: "
                f"{len(results)} results in {processing_time:.2f}ms"
            )
            return results

        except Exception as e:
            logger.error(f"Similarity search failed: {e}")
            return []

    async def get_documents(
        self,
        conditions: Dict[str, Any],
        limit: int = 1000
    ) -> List[Document]:
        """Fetch documents matching a filter (no ranking)"""
        try:
            points, _ = await asyncio.to_thread(
                self.client.scroll,
                collection_name=self.collection_name,
                scroll_filter=build_filter(conditions),
                limit=limit,
                with_payload=True,
                with_vectors=False
            )
            return [Document.from_payload(point.payload or {}) for point in points]

        except Exception as e:
            logger.error(f"Failed to get documents from {self.collection_name}: {e}")
            return []

    async def _count_or_raise(self, conditions: Optional[Dict[str, Any]]) -> int:
        result = await asyncio.to_thread(
            self.client.count,
            collection_name=self.collection_name,
            count_filter=build_filter(conditions),
            exact=True
        )
        return result.count if result else 0

    async def count(self, conditions: Optional[Dict[str, Any]] = None) -> int:
        """Count documents matching a filter; 0 on failure"""
        try:
            return await self._count_or_raise(conditions)

        except Exception as e:
            logger.error(f"Failed to count documents in {self.collection_name}: {e}")
            return 0

    async def newest_active_version(self, entity_type: EntityType, entity_id: int) -> Optional[int]:
        """Highest version among an entity's ACTIVE documents"""
        documents = await self.get_documents({
            "entity_type": EntityType.parse(entity_type).value,
            "entity_id": entity_id,
            "status": DocumentStatus.ACTIVE.value,
        })
        versions = [doc.metadata.get("version") for doc in documents]
        versions = [v for v in versions if isinstance(v, int)]
        return max(versions) if versions else None

    async def get_collection_info(self) -> Optional[Dict[str, Any]]:
        try:
            info = await asyncio.to_thread(self.client.get_collection, self.collection_name)
            return {
                "name": self.collection_name,
                "points_count": info.points_count,
                "status": str(info.status),
            }

        except Exception as e:
            logger.error(f"Failed to get collection info for {self.collection_name}: {e}")
            return None
