"""
Tests for consistency-aware search and its keyword fallback.
"""

from unittest.mock import AsyncMock

import pytest

from core.models.entities import EntityType
from core.models.storage import Document, DocumentMetadata, IndexDocument
from core.search.consistency import ConsistentSearchService, fallback_cap, parse_claim
from core.search.fallback import SUBSTRING_BONUS, keyword_score, query_terms, rank_by_keywords
from core.storage.client import QdrantIndexStore


async def index_version(index_store, entity_type, entity_id, version, text, project_id=1):
    metadata = DocumentMetadata(
        entity_type=entity_type, entity_id=entity_id, version=version, project_id=project_id
    )
    await index_store.upsert([IndexDocument.for_chunk(text, metadata)])


@pytest.fixture
def service(index_store, version_store):
    return ConsistentSearchService(index_store, version_store)


class TestKeywordFallback:

    def test_query_terms_are_unique_and_lowercase(self):
        assert query_terms("Storm storm HARBOUR") == ["storm", "harbour"]

    def test_substring_outranks_term_matches(self):
        whole = keyword_score("red dragon", "the red dragon sleeps")
        partial = keyword_score("red dragon", "a dragon with red scales")

        assert whole == SUBSTRING_BONUS + 2
        assert partial == 2
        assert keyword_score("red dragon", "nothing here") == 0

    def test_rank_drops_non_matches_and_keeps_order_on_ties(self):
        candidates = [("a", "dragon"), ("b", "no match"), ("c", "dragon"), ("d", "red dragon")]

        ranked = rank_by_keywords("red dragon", candidates, limit=5)

        assert [item for item, _, _ in ranked] == ["d", "a", "c"]

    def test_rank_respects_limit(self):
        assert rank_by_keywords("x", [("a", "x"), ("b", "x")], limit=1)[0][0] == "a"
        assert rank_by_keywords("x", [("a", "x")], limit=0) == []


class TestHelpers:

    def test_fallback_cap(self):
        assert fallback_cap(1) == 1
        assert fallback_cap(5) == 2
        assert fallback_cap(10) == 5

    def test_parse_claim(self):
        assert parse_claim({"entity_type": "plot", "entity_id": "7", "version": 2}) == (EntityType.PLOT, 7, 2)
        assert parse_claim({"entity_type": "plot", "entity_id": 7}) is None
        assert parse_claim({"entity_type": "spaceship", "entity_id": 7, "version": 1}) is None


class TestConsistentSearchService:
    """Read-side version filtering"""

    @pytest.mark.asyncio
    async def test_returns_current_versions(self, service, index_store, version_store):
        version_store.put(EntityType.CHAPTER, 1, "The lighthouse keeper", project_id=1)
        await index_version(index_store, EntityType.CHAPTER, 1, 1, "The lighthouse keeper")

        results = await service.search("lighthouse keeper", top_k=3)

        assert [d.id for d in results] == ["chapter-1-v1"]
        assert not results[0].is_fallback

    @pytest.mark.asyncio
    async def test_stale_hits_are_dropped(self, service, index_store, version_store):
        version_store.put(EntityType.CHAPTER, 1, "old lighthouse text", project_id=1)
        version_store.put(EntityType.CHAPTER, 1, "new lighthouse text", project_id=1)
        # Only v1 is indexed and still ACTIVE; the store is already at v2
        await index_version(index_store, EntityType.CHAPTER, 1, 1, "old lighthouse text")

        results = await service.search("lighthouse", top_k=3)

        assert results == []
        assert service.metrics.rejected_stale == 1

    @pytest.mark.asyncio
    async def test_orphaned_hits_are_dropped(self, service, index_store):
        await index_version(index_store, EntityType.CHARACTER, 9, 1, "Captain Mara")

        assert await service.search("Captain Mara", top_k=3) == []
        assert service.metrics.rejected_orphaned == 1

    @pytest.mark.asyncio
    async def test_malformed_metadata_is_dropped(self, version_store):
        index = AsyncMock(spec=QdrantIndexStore)
        index.similarity_search.return_value = [Document(id="x", text="t", metadata={"entity_id": 1})]
        service = ConsistentSearchService(index, version_store)

        assert await service.search("t", top_k=3) == []
        assert service.metrics.rejected_malformed == 1

    @pytest.mark.asyncio
    async def test_fallback_fills_short_results(self, service, version_store):
        version_store.put(EntityType.WORLD, 3, "The red dragon sleeps under the mountain", project_id=1)
        version_store.put(EntityType.PLOT, 4, "A dragon hunt begins", project_id=1)
        version_store.put(EntityType.PLOT, 5, "Red dragon in another book", project_id=2)

        results = await service.search("red dragon", top_k=4, project_id=1)

        assert [d.id for d in results] == ["world-3-fallback", "plot-4-fallback"]
        assert all(d.is_fallback for d in results)
        assert results[0].metadata["version"] == 1
        assert results[0].metadata["source"] == "fallback"

    @pytest.mark.asyncio
    async def test_fallback_is_capped_at_half(self, service, version_store):
        for entity_id in range(1, 6):
            version_store.put(EntityType.PLOT, entity_id, f"dragon tale {entity_id}", project_id=1)

        results = await service.search("dragon", top_k=4, project_id=1)

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_fallback_skips_entities_already_found(self, service, index_store, version_store):
        version_store.put(EntityType.CHAPTER, 1, "The dragon attacks the harbour", project_id=1)
        version_store.put(EntityType.CHAPTER, 2, "dragon scales for sale", project_id=1)
        await index_version(index_store, EntityType.CHAPTER, 1, 1, "The dragon attacks the harbour")

        results = await service.search("dragon", top_k=4, project_id=1)

        ids = [d.id for d in results]
        assert ids[0] == "chapter-1-v1"
        assert "chapter-1-fallback" not in ids
        assert "chapter-2-fallback" in ids

    @pytest.mark.asyncio
    async def test_no_fallback_without_project(self, service, version_store):
        version_store.put(EntityType.PLOT, 4, "A dragon hunt begins", project_id=1)

        assert await service.search("dragon", top_k=4) == []

    @pytest.mark.asyncio
    async def test_vector_failure_serves_fallback(self, version_store):
        version_store.put(EntityType.PLOT, 4, "A dragon hunt begins", project_id=1)
        index = AsyncMock(spec=QdrantIndexStore)
        index.similarity_search.side_effect = RuntimeError("qdrant down")
        service = ConsistentSearchService(index, version_store)

        results = await service.search("dragon", top_k=4, project_id=1)

        assert [d.id for d in results] == ["plot-4-fallback"]
        assert service.metrics.vector_failures == 1
        assert await service.search("dragon", top_k=4) == []

    @pytest.mark.asyncio
    async def test_fallback_lookup_failure_returns_vector_results(self, index_store):
        store = AsyncMock()
        store.get_current_version.return_value = 1
        store.find_by_keyword.side_effect = RuntimeError("db gone")
        await index_version(index_store, EntityType.CHAPTER, 1, 1, "dragon")
        service = ConsistentSearchService(index_store, store)

        results = await service.search("dragon", top_k=4, project_id=1)

        assert [d.id for d in results] == ["chapter-1-v1"]

    @pytest.mark.asyncio
    async def test_blank_query_and_zero_top_k(self, service):
        assert await service.search("   ") == []
        assert await service.search("dragon", top_k=0) == []
        assert service.metrics.searches == 0

    @pytest.mark.asyncio
    async def test_version_lookup_once_per_entity(self, index_store):
        store = AsyncMock()
        store.get_current_version.return_value = 1
        metadata = dict(entity_type="chapter", entity_id=1, version=1)
        index = AsyncMock(spec=QdrantIndexStore)
        index.similarity_search.return_value = [
            Document(id="chapter-1-v1-chunk-0", metadata=metadata),
            Document(id="chapter-1-v1-chunk-1", metadata=metadata),
        ]
        service = ConsistentSearchService(index, store)

        results = await service.search("anything", top_k=5)

        assert len(results) == 2
        store.get_current_version.assert_awaited_once_with(EntityType.CHAPTER, 1)
