"""
Config system - Layered configuration with validation.

Merge order (later overrides earlier):
1. Defaults
2. Config file (JSON or YAML)
3. ``.env`` file
4. Environment variables (``RAMPART_`` prefix)
5. Manual overrides
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import dotenv_values

from .csrf import CSRFConfig
from .faults import ConfigError


logger = logging.getLogger("rampart.config")


DEFAULTS: Dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 8989,
        "workers": 1,
        "debug": False,
        "log_level": "info",
    },
    "csrf": {},
}


@dataclass(frozen=True)
class ServerConfig:
    """Settings handed to uvicorn and the exception stage."""
    host: str = "0.0.0.0"
    port: int = 8989
    workers: int = 1
    debug: bool = False
    log_level: str = "info"


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Environment variables use ``__`` for nesting:
    ``RAMPART_CSRF__EXPIRES=3600`` sets ``csrf.expires``.
    """

    def __init__(self, env_prefix: str = "RAMPART_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}
        self._merge_dict(self.config_data, json.loads(json.dumps(DEFAULTS)))

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        env_prefix: str = "RAMPART_",
        env_file: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from every source.

        Args:
            path: JSON or YAML config file
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)
            environ: Environment mapping (defaults to ``os.environ``)

        Raises:
            ConfigError: If a file cannot be read or parsed
        """
        loader = cls(env_prefix=env_prefix)

        if path:
            loader._load_file(Path(path))

        if env_file:
            loader._load_env_file(Path(env_file))

        loader._load_from_env(os.environ if environ is None else environ)

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    def _load_file(self, path: Path):
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", path=str(path))

        try:
            with open(path) as f:
                if path.suffix == ".json":
                    data = json.load(f)
                elif path.suffix in (".yaml", ".yml"):
                    data = yaml.safe_load(f)
                else:
                    raise ConfigError(f"Unsupported config format: {path.suffix}", path=str(path))
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config file {path}: {e}", path=str(path))

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping", path=str(path))
        logger.debug("Loaded config from %s", path)
        self._merge_dict(self.config_data, data)

    def _load_env_file(self, path: Path):
        """Load prefixed keys from a .env file."""
        if not path.exists():
            logger.debug("No .env file at %s", path)
            return
        for key, value in dotenv_values(path).items():
            if value is not None and key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _load_from_env(self, environ: Mapping[str, str]):
        for key, value in environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str):
        """Convert RAMPART_CSRF__EXPIRES to nested dict."""
        key = key[len(self.env_prefix):]
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, path: str, default: Any = None) -> Any:
        """Get config value by dot-separated path."""
        current = self.config_data
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    def to_dict(self) -> dict:
        return json.loads(json.dumps(self.config_data))

    # ========================================================================
    # Typed sections
    # ========================================================================

    def csrf_config(self) -> CSRFConfig:
        """
        Build the immutable CSRF settings from the ``csrf`` section.

        Raises:
            ConfigError: On unknown keys or values of the wrong type
        """
        data = dict(self.get("csrf", {}) or {})

        # A single pattern/header may be given as a plain string
        for key in ("header_names", "except_paths", "verify_methods"):
            if isinstance(data.get(key), str):
                data[key] = [item.strip() for item in data[key].split(",") if item.strip()]

        self._check_section("csrf", data, CSRFConfig, {
            "cookie_name": (str,),
            "header_names": (list, tuple),
            "field_name": (str,),
            "except_paths": (list, tuple),
            "expires": (int,),
            "verify_methods": (list, tuple, set, frozenset),
            "cookie_path": (str,),
            "cookie_domain": (str, type(None)),
            "cookie_secure": (bool, type(None)),
            "cookie_samesite": (str, type(None)),
        })
        try:
            return CSRFConfig(**data)
        except ValueError as e:
            raise ConfigError(f"Invalid csrf config: {e}")

    def server_config(self) -> ServerConfig:
        data = dict(self.get("server", {}) or {})
        self._check_section("server", data, ServerConfig, {
            "host": (str,),
            "port": (int,),
            "workers": (int,),
            "debug": (bool,),
            "log_level": (str,),
        })
        return ServerConfig(**data)

    @staticmethod
    def _check_section(name: str, data: dict, config_class: type, types: Dict[str, tuple]):
        known = {f.name for f in fields(config_class)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(
                f"Unknown {name} config keys: {', '.join(sorted(unknown))}",
                section=name,
            )
        for key, value in data.items():
            expected = types[key]
            # bool is an int subclass; do not let True pass as a port number
            if isinstance(value, bool) and bool not in expected:
                raise ConfigError(f"Config field '{name}.{key}' expected {expected[0].__name__}, got bool")
            if not isinstance(value, expected):
                raise ConfigError(
                    f"Config field '{name}.{key}' expected {expected[0].__name__}, "
                    f"got {type(value).__name__}"
                )
