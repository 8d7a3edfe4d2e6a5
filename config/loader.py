"""
Configuration loading and management.

Layers built-in defaults, an optional JSON config file, and environment
variable overrides into a validated SyncSettings instance.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

from pydantic import ValidationError

from core.models.config import SyncSettings, GlobalSettings
from .defaults import DEFAULT_SETTINGS, ENV_VAR_MAPPING, STRING_SETTINGS

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when a configuration file cannot be loaded or validated"""


class ConfigurationLoader:
    """Load and manage engine configuration"""

    def __init__(self, global_settings: Optional[GlobalSettings] = None):
        self.global_settings = global_settings or GlobalSettings()

    def load(self, config_path: Optional[Union[str, Path]] = None) -> SyncSettings:
        """
        Load settings from defaults, a JSON file and the environment.

        Args:
            config_path: Explicit config file; falls back to the global default
                location, which is optional

        Returns:
            Validated settings

        Raises:
            ConfigurationError: If an explicit file is missing or any layer is invalid
        """
        data = copy.deepcopy(DEFAULT_SETTINGS)

        explicit = config_path is not None
        path = Path(config_path) if explicit else self.global_settings.default_config_file

        if path.exists():
            file_data = self._load_file(path)
            data = self._deep_merge(data, file_data)
            logger.debug(f"Loaded configuration from {path}")
        elif explicit:
            raise ConfigurationError(f"Config file not found: {path}")

        data = self._apply_env_overrides(data)

        try:
            return SyncSettings(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def save(self, settings: SyncSettings, config_path: Union[str, Path]) -> Path:
        """Save settings to disk as JSON"""
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w', encoding='utf-8') as f:
            json.dump(settings.to_dict(), f, indent=2, ensure_ascii=False)

        logger.info(f"Saved configuration to {path}")
        return path

    def _load_file(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load config from {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")
        return data

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override into base"""
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                base[key] = self._deep_merge(base[key], value)
            else:
                base[key] = value
        return base

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_path in ENV_VAR_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config_data, config_path, env_value)

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set nested dictionary value using dot notation path"""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        final_key = keys[-1]
        if path in STRING_SETTINGS:
            current[final_key] = value
        else:
            current[final_key] = self._convert_env_value(value)

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        # Boolean conversion
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        # Numeric conversion
        try:
            if '.' in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        # Return as string
        return value


def load_settings(config_path: Optional[Union[str, Path]] = None) -> SyncSettings:
    """Convenience wrapper around ConfigurationLoader.load"""
    return ConfigurationLoader().load(config_path)
