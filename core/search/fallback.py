"""
Keyword matching used by fallback search.

A whole-query substring hit always outranks partial matches; otherwise
candidates are ranked by how many distinct query terms they contain.
Matching is case-insensitive.
"""

import re
from typing import Iterable, List, Tuple, TypeVar

T = TypeVar('T')

_TERM_RE = re.compile(r"\w+", re.UNICODE)

SUBSTRING_BONUS = 1000.0


def query_terms(query: str) -> List[str]:
    seen = []
    for term in _TERM_RE.findall(query.lower()):
        if term not in seen:
            seen.append(term)
    return seen


def keyword_score(query: str, text: str) -> float:
    """Score ``text`` against ``query``; 0 means no match"""
    needle = query.strip().lower()
    if not needle or not text:
        return 0.0

    haystack = text.lower()
    score = float(sum(1 for term in query_terms(needle) if term in haystack))
    if needle in haystack:
        score += SUBSTRING_BONUS
    return score


def rank_by_keywords(
    query: str,
    candidates: Iterable[Tuple[T, str]],
    limit: int
) -> List[Tuple[T, str, float]]:
    """
    Rank (item, text) candidates by keyword score, dropping non-matches.

    Ties keep the candidates' original order.
    """
    if limit <= 0:
        return []

    scored = []
    for position, (item, text) in enumerate(candidates):
        score = keyword_score(query, text)
        if score > 0:
            scored.append((-score, position, item, text, score))

    scored.sort(key=lambda entry: (entry[0], entry[1]))
    return [(item, text, score) for _, _, item, text, score in scored[:limit]]
