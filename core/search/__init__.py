"""
Search package for novel-vector-sync.

Provides consistency-filtered similarity search with keyword fallback.
"""

from .fallback import keyword_score, rank_by_keywords
from .consistency import ConsistentSearchService, SearchMetrics

__all__ = [
    "ConsistentSearchService",
    "SearchMetrics",
    "keyword_score",
    "rank_by_keywords",
]
