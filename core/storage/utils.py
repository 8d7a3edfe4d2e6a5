"""
Storage utilities shared by the index store and its callers.
"""

import hashlib


def document_id_to_point_id(doc_id: str) -> int:
    """
    Convert a document id to a Qdrant point id using consistent SHA256 hashing.

    Qdrant only accepts unsigned integers or UUIDs as point ids, so the
    human-readable document id is hashed here and also kept in the payload.

    Example:
        >>> document_id_to_point_id("chapter-42-v2") == document_id_to_point_id("chapter-42-v2")
        True
    """
    # First 8 bytes of the digest as an unsigned integer
    hash_digest = hashlib.sha256(doc_id.encode('utf-8')).digest()
    return int.from_bytes(hash_digest[:8], byteorder='big', signed=False)
