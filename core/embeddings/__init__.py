"""
Embedding providers for novel-vector-sync.
"""

from .base import BaseEmbedder, EmbeddingError, EmbeddingResponse
from .hashing import HashingEmbedder

__all__ = [
    "BaseEmbedder",
    "EmbeddingError",
    "EmbeddingResponse",
    "HashingEmbedder",
]
