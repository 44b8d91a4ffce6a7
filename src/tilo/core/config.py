"""Configuration management for tilo."""

import copy
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml  # type: ignore[import-untyped]
from jsonschema import ValidationError, validate  # type: ignore[import-untyped]

CONFIG_FILE_ENV = "TILO_CONFIG_FILE"

# Environment variable -> config key
ENV_KEYS = {
    "TILO_SOCKET": "server.socket",
    "TILO_BACKEND": "backend.name",
    "TILO_DB_FILE": "backend.sqlite3.db_file",
    "TILO_LOG_LEVEL": "logging.level",
    "TILO_LOG_FILE": "logging.file",
}


def default_config_dir() -> Path:
    return Path.home() / ".config" / "tilo"


def default_socket_path() -> str:
    """Per-user socket path inside the system temp directory."""
    return str(Path(tempfile.gettempdir()) / f"tilo{os.getuid()}" / "server")


class ConfigManager:
    """Manage application configuration.

    Values are layered: defaults, then the YAML file, then environment
    variables, then explicit overrides (e.g. command-line options). Only
    the file layer is ever written back.
    """

    DEFAULT_CONFIG = {
        "version": "1.0",
        "server": {
            "socket": default_socket_path(),
            "listener_timeout": 2.0,
            "recent_limit": 5,
        },
        "backend": {
            "name": "sqlite3",
            "sqlite3": {
                "db_file": str(default_config_dir() / "tilo.db"),
            },
        },
        "logging": {
            "level": "INFO",
            "file": str(default_config_dir() / "tilo.log"),
        },
    }

    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "version": {"type": "string"},
            "server": {
                "type": "object",
                "properties": {
                    "socket": {"type": "string", "minLength": 1},
                    "listener_timeout": {"type": "number", "exclusiveMinimum": 0},
                    "recent_limit": {"type": "integer", "minimum": 1, "maximum": 1000},
                },
            },
            "backend": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "enum": ["sqlite3"]},
                    "sqlite3": {
                        "type": "object",
                        "properties": {
                            "db_file": {"type": "string", "minLength": 1},
                        },
                    },
                },
            },
            "logging": {
                "type": "object",
                "properties": {
                    "level": {
                        "type": "string",
                        "enum": ["DEBUG", "INFO", "WARNING", "ERROR"],
                    },
                    "file": {"type": ["string", "null"]},
                },
            },
        },
        "required": ["version"],
    }

    def __init__(
        self,
        config_path: Optional[Path] = None,
        overrides: Optional[dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """Initialize configuration manager.

        Args:
            config_path: Path to config file. Defaults to $TILO_CONFIG_FILE
                or ~/.config/tilo/config.yml
            overrides: Dot-notation values taking precedence over everything
            environ: Environment to read (defaults to os.environ)

        Raises:
            ValueError: If the config file is invalid
        """
        self.environ = os.environ if environ is None else environ
        if config_path is None:
            env_path = self.environ.get(CONFIG_FILE_ENV)
            config_path = Path(env_path) if env_path else default_config_dir() / "config.yml"
        self.config_path = Path(config_path).expanduser()
        self.overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        self._file_config: dict[str, Any] = {}
        self._config: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load the config file (if any) and apply the upper layers."""
        loaded: dict[str, Any] = {}
        if self.config_path.exists():
            with open(self.config_path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError(f"Invalid configuration in {self.config_path}")
        self._file_config = self._merge_with_defaults(loaded)
        self._apply_layers()

    def _apply_layers(self) -> None:
        config = copy.deepcopy(self._file_config)
        for env_name, key in ENV_KEYS.items():
            value = self.environ.get(env_name)
            if value:
                self._set_in(config, key, value)
        for key, value in self.overrides.items():
            self._set_in(config, key, value)
        self._config = config
        self.validate()

    def _merge_with_defaults(self, config: dict[str, Any]) -> dict[str, Any]:
        result = copy.deepcopy(self.DEFAULT_CONFIG)
        self._deep_merge(result, config)
        return result

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> None:
        """Deep merge override into base dictionary (in-place).

        Args:
            base: Base dictionary to merge into
            override: Dictionary with values to override
        """
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    @staticmethod
    def _set_in(config: dict[str, Any], key: str, value: Any) -> None:
        keys = key.split(".")
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., 'server.socket')
            default: Default value if key not found

        Returns:
            Configuration value or default

        Example:
            >>> config.get('server.recent_limit')
            5
        """
        value: Any = self._config
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
            if value is None:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a value in the config file.

        Args:
            key: Configuration key in dot notation
            value: Value to set

        Raises:
            ValueError: If configuration is invalid after setting
        """
        candidate = copy.deepcopy(self._file_config)
        self._set_in(candidate, key, value)
        try:
            validate(instance=candidate, schema=self.CONFIG_SCHEMA)
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e.message}")
        self._file_config = candidate
        self._apply_layers()
        self.save()

    def validate(self) -> bool:
        """Validate configuration against schema.

        Returns:
            True if valid

        Raises:
            ValueError: If configuration is invalid
        """
        try:
            validate(instance=self._config, schema=self.CONFIG_SCHEMA)
            return True
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e.message}")

    def save(self) -> None:
        """Save the file layer of the configuration."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                self._file_config, f, default_flow_style=False, sort_keys=False, allow_unicode=True
            )

    def reset(self) -> None:
        """Reset the file to the default configuration."""
        self._file_config = copy.deepcopy(self.DEFAULT_CONFIG)
        self._apply_layers()
        self.save()

    def to_dict(self) -> dict[str, Any]:
        """Get the effective configuration as a dictionary."""
        return copy.deepcopy(self._config)

    def get_all_keys(self, prefix: str = "") -> list[str]:
        """Get all configuration keys in dot notation.

        Args:
            prefix: Prefix for recursive traversal (internal use)

        Returns:
            List of all configuration keys
        """
        keys = []
        config = self._config if not prefix else self.get(prefix, {})

        if isinstance(config, dict):
            for key, value in config.items():
                full_key = f"{prefix}.{key}" if prefix else key
                if isinstance(value, dict):
                    keys.extend(self.get_all_keys(full_key))
                else:
                    keys.append(full_key)
        return keys
