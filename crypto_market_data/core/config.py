"""
Layered configuration: packaged YAML defaults, user YAML files and environment overrides.

Values are looked up with dotted paths (``api.timeout``). Sources are merged
in order, later sources winning:

1. the packaged ``default.yaml``
2. ``config.yaml`` and ``<ENVIRONMENT>.yaml`` from the user config directory
3. variables from a ``.env`` file
4. environment variables carrying the ``CRYPTO_MARKET_`` prefix
"""

import logging
import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from ..data.resources import DEFAULT_POLICIES, ResourceClass, ResourcePolicy

logger = logging.getLogger(__name__)

PACKAGED_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"
DEFAULT_CONFIG_DIR = Path("~/.crypto_market").expanduser()

_MISSING = object()


class ConfigError(Exception):
    """Invalid or unavailable configuration."""
    pass


class ConfigManager:
    """
    Merged view over every configuration source.

    ``initialize`` must run before values are read; until then ``get``
    raises :class:`ConfigError`.
    """

    def __init__(self, config_dir: Optional[Path] = None, env_prefix: str = "CRYPTO_MARKET",
                 defaults_dir: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_dir: Directory holding ``config.yaml`` (default ``~/.crypto_market``)
            env_prefix: Prefix of environment variables that override values
            defaults_dir: Directory holding the packaged ``default.yaml``
        """
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.defaults_dir = Path(defaults_dir) if defaults_dir else PACKAGED_CONFIG_DIR
        self.env_prefix = env_prefix

        self._config: Dict[str, Any] = {}
        self._loaded = False

    async def initialize(self) -> None:
        """Read every source and mark the configuration as loaded."""
        # .env values become environment variables, picked up as overrides below
        load_dotenv()

        await self.load_config()
        self._loaded = True

    async def load_config(self) -> None:
        """Rebuild the merged configuration from scratch."""
        self._config = {}
        for path in self._config_files():
            self._merge_file(path)
        self._apply_env_overrides()
        logger.debug(f"Configuration sections: {', '.join(sorted(self._config)) or 'none'}")

    def _config_files(self) -> List[Path]:
        environment = os.getenv("ENVIRONMENT", "development")
        return [
            self.defaults_dir / "default.yaml",
            self.config_dir / "config.yaml",
            self.config_dir / f"{environment}.yaml",
        ]

    def _merge_file(self, path: Path) -> None:
        if not path.is_file():
            return

        try:
            data = yaml.safe_load(path.read_text()) or {}
            if not isinstance(data, dict):
                raise ConfigError(f"top level of {path} is not a mapping")
        except (OSError, yaml.YAMLError, ConfigError) as e:
            logger.error(f"Ignoring config file {path}: {e}")
            return

        self._merge_config(self._config, data)
        logger.debug(f"Merged config from {path}")

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides.

        ``PREFIX_API_TIMEOUT`` maps to ``api.timeout``; a double underscore
        separates deeper levels (``PREFIX_POLICIES__MARKET_LIST__TTL``).
        """
        prefix = f"{self.env_prefix}_"

        for name, raw in os.environ.items():
            if not name.startswith(prefix):
                continue
            path = name[len(prefix):].lower()
            parts = path.split('__') if '__' in path else path.split('_', 1)
            self._set_nested_value(self._config, '.'.join(parts), raw)
            logger.debug(f"Environment override for {'.'.join(parts)}")

    def _merge_config(self, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        """Deep-merge ``source`` into ``target``; nested mappings merge, anything else replaces."""
        for key, value in source.items():
            existing = target.get(key)
            if isinstance(existing, dict) and isinstance(value, dict):
                self._merge_config(existing, value)
            else:
                target[key] = value

    def _set_nested_value(self, config: Dict[str, Any], key_path: str, value: Any) -> None:
        *parents, leaf = key_path.split('.')
        node = config
        for part in parents:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[leaf] = self._convert_value(value)

    def _convert_value(self, value: Any) -> Any:
        """Turn an environment string into a bool, int or float where it looks like one."""
        if not isinstance(value, str):
            return value

        lowered = value.strip().lower()
        if lowered in ('true', 'false'):
            return lowered == 'true'
        if lowered in ('null', 'none'):
            return None

        for convert in (int, float):
            try:
                return convert(value)
            except ValueError:
                continue
        return value

    def _lookup(self, key: str) -> Any:
        node: Any = self._config
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return _MISSING
            node = node[part]
        return node

    def get(self, key: str, default: Any = None) -> Any:
        """Value at a dotted path, or ``default`` when the path is absent."""
        if not self._loaded:
            raise ConfigError("Configuration not loaded")

        value = self._lookup(key)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any) -> None:
        self._set_nested_value(self._config, key, value)

    def get_all(self) -> Dict[str, Any]:
        return self._config.copy()

    def has(self, key: str) -> bool:
        return self._loaded and self._lookup(key) is not _MISSING


_POLICY_FIELDS = {f.name for f in fields(ResourcePolicy)}


def build_policies(config: ConfigManager) -> Dict[ResourceClass, ResourcePolicy]:
    """Merge ``policies.*`` overrides into the default policy table.

    Raises:
        ConfigError: For an unknown resource class or field, or an invalid value
    """
    overrides = config.get("policies", {}) or {}
    if not isinstance(overrides, dict):
        raise ConfigError("'policies' must be a mapping of resource class to settings")

    policies = dict(DEFAULT_POLICIES)

    for class_name, settings in overrides.items():
        try:
            resource_class = ResourceClass(class_name)
        except ValueError:
            raise ConfigError(f"Unknown resource class in policies: {class_name}")

        if not settings:
            continue
        if not isinstance(settings, dict):
            raise ConfigError(f"Policy for {class_name} must be a mapping")

        unknown = set(settings) - _POLICY_FIELDS
        if unknown:
            raise ConfigError(f"Unknown policy fields for {class_name}: {', '.join(sorted(unknown))}")

        try:
            policies[resource_class] = policies[resource_class].with_overrides(**settings)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid policy for {class_name}: {e}")

    return policies
