"""
System-of-record adapters.
"""

from .base import FallbackMatch, VersionStore
from .memory import InMemoryVersionStore

__all__ = ["FallbackMatch", "VersionStore", "InMemoryVersionStore"]
