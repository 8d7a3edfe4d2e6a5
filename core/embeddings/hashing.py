"""
Feature-hashing embedder.

A deterministic, dependency-light embedder used for local runs and tests.
Tokens (lowercased words plus character trigrams) are hashed into a fixed
number of signed buckets and the result is L2-normalized.
"""

import hashlib
import re
from typing import Any, Dict, List, Optional

import numpy as np

from .base import BaseEmbedder

_WORD_RE = re.compile(r"\w+", re.UNICODE)


class HashingEmbedder(BaseEmbedder):
    """Signed feature hashing over words and character trigrams"""

    def __init__(self, dimensions: int = 256, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        if dimensions < 8:
            raise ValueError("dimensions must be at least 8")
        self._dimensions = dimensions

    @property
    def model_name(self) -> str:
        return f"feature-hashing-{self._dimensions}"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _tokens(self, text: str) -> List[str]:
        tokens = []
        for word in _WORD_RE.findall(text.lower()):
            tokens.append(word)
            padded = f"#{word}#"
            tokens.extend(padded[i:i + 3] for i in range(len(padded) - 2))
        return tokens

    def _bucket(self, token: str) -> tuple:
        digest = hashlib.md5(token.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], byteorder="big") % self._dimensions
        sign = 1.0 if digest[4] & 1 else -1.0
        return index, sign

    def embed_sync(self, text: str) -> List[float]:
        vector = np.zeros(self._dimensions, dtype=np.float32)
        for token in self._tokens(text):
            index, sign = self._bucket(token)
            vector[index] += sign

        norm = float(np.linalg.norm(vector))
        if norm == 0.0:
            # Cosine distance is undefined for the zero vector
            vector[0] = 1.0
            norm = 1.0
        return (vector / norm).astype(float).tolist()

    async def _generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_sync(text) for text in texts]
