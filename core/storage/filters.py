"""
Filter expressions over document metadata.

Filters are plain dicts keyed by payload field:

- a scalar value is an equality match (``{"entity_id": 42}``)
- a list or tuple matches any of its values (``{"entity_type": ["plot", "world"]}``)
- a dict with ``lt``/``lte``/``gt``/``gte`` is a range (``{"version": {"lt": 3}}``)

All conditions are ANDed.
"""

from enum import Enum
from typing import Any, Dict, Optional

from qdrant_client.models import FieldCondition, Filter, MatchAny, MatchValue, Range

RANGE_KEYS = {"lt", "lte", "gt", "gte"}


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def build_condition(field: str, value: Any) -> FieldCondition:
    """Build a single field condition"""
    if isinstance(value, dict):
        unknown = set(value) - RANGE_KEYS
        if unknown or not value:
            raise ValueError(f"Invalid range for {field}: {value}")
        return FieldCondition(key=field, range=Range(**value))

    if isinstance(value, (list, tuple, set)):
        return FieldCondition(key=field, match=MatchAny(any=[_plain(v) for v in value]))

    return FieldCondition(key=field, match=MatchValue(value=_plain(value)))


def build_filter(conditions: Optional[Dict[str, Any]]) -> Optional[Filter]:
    """Build a Qdrant filter from a condition dict; None when empty"""
    if not conditions:
        return None

    must = [
        build_condition(field, value)
        for field, value in conditions.items()
        if value is not None
    ]
    if not must:
        return None
    return Filter(must=must)
