"""
Configuration management for novel-vector-sync

Handles loading, validation, and environment overrides.
"""

from .loader import ConfigurationLoader, ConfigurationError, load_settings
from .defaults import DEFAULT_SETTINGS, ENV_VAR_MAPPING

__all__ = [
    "ConfigurationLoader",
    "ConfigurationError",
    "load_settings",
    "DEFAULT_SETTINGS",
    "ENV_VAR_MAPPING",
]
