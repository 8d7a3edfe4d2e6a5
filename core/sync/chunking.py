"""
Text chunking for the vectorization pipeline.
"""

from typing import List


def split_content(text: str, chunk_size: int = 500, overlap: int = 100) -> List[str]:
    """
    Split text into overlapping chunks of at most ``chunk_size`` characters.

    Each chunk after the first starts ``overlap`` characters before the end
    of the previous one, so dropping the first ``overlap`` characters of
    every chunk but the first reconstructs ``text`` exactly.

    Args:
        text: Text to split
        chunk_size: Maximum chunk length
        overlap: Characters shared between consecutive chunks

    Returns:
        List of chunks; empty for empty text, a single chunk when
        ``len(text) <= chunk_size``
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")

    if not text:
        return []
    if len(text) <= chunk_size:
        return [text]

    chunks = []
    start = 0
    length = len(text)

    while start < length:
        end = min(start + chunk_size, length)
        chunks.append(text[start:end])

        if end >= length:
            break

        next_start = end - overlap
        if next_start <= start:
            next_start = end
        start = next_start

    return chunks


def merge_chunks(chunks: List[str], overlap: int) -> str:
    """Inverse of split_content for chunks produced with the same overlap"""
    if not chunks:
        return ""
    return chunks[0] + "".join(chunk[overlap:] for chunk in chunks[1:])
