"""
Configuration Module for the Document Scanner.

Settings are layered: the packaged defaults in ``settings.yaml`` are loaded
first, then an optional user file (``DOCSCAN_CONFIG`` or an explicit path)
is deep-merged on top, then runtime overrides set through ``set()``.
Components read configuration once at construction time.
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional


DEFAULTS_PATH = Path(__file__).parent / "settings.yaml"
ENV_CONFIG_VAR = "DOCSCAN_CONFIG"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


class ConfigurationManager:
    """
    Centralized configuration for the scanner.

    Attributes:
        config_path (Optional[Path]): User configuration file merged over
            the packaged defaults, if any.

    Example:
        >>> config = ConfigurationManager()
        >>> config.get("scan.batch_size")
        20
        >>> config.set("scan.batch_size", 10)
    """

    _instance: Optional['ConfigurationManager'] = None

    def __new__(cls, config_path: Optional[str] = None) -> 'ConfigurationManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None) -> None:
        """
        Initialize the configuration manager.

        Args:
            config_path: Optional user configuration file. Falls back to the
                DOCSCAN_CONFIG environment variable when not given.
        """
        if self._initialized:
            return

        user_path = config_path or os.environ.get(ENV_CONFIG_VAR)
        self.config_path = Path(user_path) if user_path else None
        self._overrides: Dict[str, Any] = {}
        self._load_config()
        self._initialized = True

    def _load_config(self) -> None:
        """
        Load defaults and the user file, then apply runtime overrides.

        Raises:
            FileNotFoundError: If a configuration file doesn't exist.
            yaml.YAMLError: If a configuration file is invalid.
        """
        config = self._read_yaml(DEFAULTS_PATH)

        if self.config_path is not None:
            config = _deep_merge(config, self._read_yaml(self.config_path))

        self._config = _deep_merge(config, self._overrides)
        self._resolve_paths()

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        return data or {}

    def _resolve_paths(self) -> None:
        """Resolve relative entries of the ``paths`` section against the working directory."""
        for key, value in (self._config.get('paths') or {}).items():
            if value and not Path(value).is_absolute():
                self._config['paths'][key] = str(Path.cwd() / value)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "ocr.timeout_seconds").
            default: Default value if key doesn't exist.

        Returns:
            Configuration value or default.
        """
        value = self._config

        try:
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """
        Override a configuration value at runtime.

        The override survives ``reload()``.

        Args:
            key: Configuration key in dot notation.
            value: New value.
        """
        node = self._overrides
        parts = key.split('.')
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
        self._config = _deep_merge(self._config, self._overrides)

    def get_all(self) -> Dict[str, Any]:
        """Return a deep copy of the complete configuration."""
        return copy.deepcopy(self._config)

    def reload(self) -> None:
        """Reload configuration files, keeping runtime overrides."""
        self._load_config()

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton instance so the next access reloads from disk."""
        cls._instance = None


def get_config(key: str, default: Any = None) -> Any:
    """
    Convenience function to get configuration values.

    Args:
        key: Configuration key in dot notation.
        default: Default value if key doesn't exist.

    Returns:
        Configuration value or default.
    """
    return ConfigurationManager().get(key, default)


__all__ = ['ConfigurationManager', 'get_config']
