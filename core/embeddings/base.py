"""
Embedder interface for novel-vector-sync.

The index stores one vector per document chunk and embeds queries with the
same provider, so every vector an embedder returns must have exactly
``dimensions`` components.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class EmbeddingError(RuntimeError):
    """An embedder failed or returned vectors of the wrong shape"""


@dataclass
class EmbeddingResponse:
    """Vectors for a list of texts, in input order"""
    embeddings: List[List[float]]
    processing_time_ms: float
    model_name: Optional[str] = None

    @property
    def embedding_count(self) -> int:
        return len(self.embeddings)


class BaseEmbedder(ABC):
    """
    Base class for embedding providers.

    Subclasses implement ``_generate_embeddings`` for one batch; this class
    splits large inputs into batches of ``config["batch_size"]`` texts and
    validates the vectors that come back.
    """

    DEFAULT_BATCH_SIZE = 64

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.batch_size = int(self.config.get("batch_size", self.DEFAULT_BATCH_SIZE))
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.texts_embedded = 0

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass

    @property
    @abstractmethod
    def dimensions(self) -> int:
        pass

    @abstractmethod
    async def _generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Embed one batch of at most ``batch_size`` texts"""

    async def embed_texts(self, texts: List[str]) -> EmbeddingResponse:
        """
        Embed chunk texts in batches.

        Raises:
            EmbeddingError: The provider failed, or returned the wrong number
                of vectors or a vector of the wrong size
        """
        if not texts:
            return EmbeddingResponse(embeddings=[], processing_time_ms=0.0, model_name=self.model_name)

        loop = asyncio.get_running_loop()
        start_time = loop.time()

        embeddings: List[List[float]] = []
        for offset in range(0, len(texts), self.batch_size):
            batch = texts[offset:offset + self.batch_size]
            try:
                vectors = await self._generate_embeddings(batch)
            except Exception as e:
                raise EmbeddingError(f"{self.model_name} failed on {len(batch)} texts: {e}") from e
            self._check_batch(batch, vectors)
            embeddings.extend(vectors)

        self.texts_embedded += len(texts)
        return EmbeddingResponse(
            embeddings=embeddings,
            processing_time_ms=(loop.time() - start_time) * 1000,
            model_name=self.model_name
        )

    async def embed_single(self, text: str) -> List[float]:
        """Embed one query text"""
        response = await self.embed_texts([text])
        return response.embeddings[0]

    def _check_batch(self, batch: List[str], vectors: List[List[float]]) -> None:
        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"{self.model_name} returned {len(vectors)} vectors for {len(batch)} texts"
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"{self.model_name} returned a {len(vector)}-dimensional vector, "
                    f"expected {self.dimensions}"
                )

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "model_name": self.model_name,
            "dimensions": self.dimensions,
            "batch_size": self.batch_size,
            "texts_embedded": self.texts_embedded
        }
