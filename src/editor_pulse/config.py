"""Configuration management for editor-pulse."""

import json
import logging
import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.wakatime.com/api/v1"

DEFAULT_CONFIG = {
    "api_key": "",  # nosec B105
    "api_url": DEFAULT_API_URL,
    "debug": False,
    "metrics": False,
    "heartbeat_interval": 120,  # 2 minutes
    "cli_path": "",
    "plugin": "",
    "batch_size": 25,
    "flush_interval": 60,
    "max_pending": 10000,
    "auth_retry_limit": 3,
    "backoff_base": 1.0,
    "backoff_max": 300.0,
}

_INT_KEYS = ("heartbeat_interval", "batch_size", "flush_interval", "max_pending", "auth_retry_limit")
_FLOAT_KEYS = ("backoff_base", "backoff_max")
_BOOL_KEYS = ("debug", "metrics")


@dataclass(frozen=True)
class Settings:
    """Read-only configuration snapshot handed to the heartbeat core.

    A new snapshot is built on every reload; nothing keeps a reference to a
    live configuration object.
    """

    api_key: str = ""  # nosec B105
    api_url: str = DEFAULT_API_URL
    debug: bool = False
    metrics: bool = False
    heartbeat_interval: int = 120
    cli_path: str = ""
    plugin: str = ""
    batch_size: int = 25
    flush_interval: int = 60
    max_pending: int = 10000
    auth_retry_limit: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 300.0

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "Settings":
        """Build settings from a plain dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        clean: Dict[str, Any] = {}
        for key, value in values.items():
            if key not in known or value is None:
                continue
            coerced = _coerce(key, value)
            if coerced is not None:
                clean[key] = coerced
        if not clean.get("api_url"):
            clean["api_url"] = DEFAULT_API_URL
        return cls(**clean)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "Settings":
        """Build settings from editor initialization options.

        Editors send hyphenated keys (``api-key``, ``api-url``); both forms
        are accepted.
        """
        normalized = {key.replace("-", "_"): value for key, value in options.items()}
        return cls.from_dict(normalized)

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def delivery_identity(self):
        """Values whose change may fix an authentication failure."""
        return (self.api_key, self.api_url, self.cli_path)

    def masked(self) -> Dict[str, Any]:
        """Settings as a dictionary with the API key hidden, for logging."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        if values["api_key"]:
            values["api_key"] = "****" + values["api_key"][-4:]
        return values


def coerce_value(key: str, value: Any) -> Any:
    """Coerce a raw option to the type expected for ``key``.

    Raises TypeError or ValueError for unusable values.
    """
    if key in _BOOL_KEYS:
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes", "on")
        if not isinstance(value, bool):
            raise TypeError(type(value).__name__)
        return value
    if key in _INT_KEYS:
        if isinstance(value, bool):
            raise TypeError("bool")
        number = int(value)
        if number <= 0:
            raise ValueError(value)
        return number
    if key in _FLOAT_KEYS:
        if isinstance(value, bool):
            raise TypeError("bool")
        number = float(value)
        if number <= 0:
            raise ValueError(value)
        return number
    if not isinstance(value, str):
        raise TypeError(type(value).__name__)
    return value


def _coerce(key: str, value: Any) -> Any:
    """Coerce a raw option, or log a warning and return None."""
    try:
        return coerce_value(key, value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid value for {key}: {value!r}")
        return None


class Config:
    """Configuration manager for editor-pulse."""

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_dir: Custom configuration directory path
        """
        if config_dir:
            self.config_dir = Path(config_dir)
        else:
            self.config_dir = get_data_directory() / "config"

        self.config_file = self.config_dir / "settings.json"
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file or create default."""
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
                if not isinstance(config, dict):
                    raise ValueError("settings file must hold a JSON object")
                # Merge with defaults to ensure all keys exist
                merged_config = DEFAULT_CONFIG.copy()
                merged_config.update(config)
                return merged_config
            except (ValueError, IOError) as e:
                logger.warning(
                    f"Could not load config file {self.config_file}: {e}; "
                    "using default configuration"
                )

        return DEFAULT_CONFIG.copy()

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=2, ensure_ascii=False)
        except IOError as e:
            raise ConfigurationError(f"Could not save config file {self.config_file}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a known configuration value, coercing strings to its type.

        Raises:
            ConfigurationError: Unknown key or unusable value
        """
        if key not in DEFAULT_CONFIG:
            raise ConfigurationError(f"Unknown setting: {key}")
        try:
            self._config[key] = coerce_value(key, value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {key}: {value!r}") from e

    def update(self, config_dict: Dict[str, Any]) -> None:
        """Update multiple configuration values."""
        self._config.update(config_dict)

    def reset_to_defaults(self) -> None:
        """Reset configuration to default values."""
        self._config = DEFAULT_CONFIG.copy()

    def settings(self) -> Settings:
        """Build an immutable snapshot of the current configuration."""
        return Settings.from_dict(self._config)


def load_config_from_env() -> Dict[str, Any]:
    """Load configuration from environment variables.

    Returns:
        Configuration dictionary from environment
    """
    env_config: Dict[str, Any] = {}

    env_mappings = {
        "WAKATIME_API_KEY": "api_key",  # nosec B105
        "EDITOR_PULSE_API_KEY": "api_key",  # nosec B105
        "EDITOR_PULSE_API_URL": "api_url",
        "EDITOR_PULSE_DEBUG": "debug",
        "EDITOR_PULSE_METRICS": "metrics",
        "EDITOR_PULSE_HEARTBEAT_INTERVAL": "heartbeat_interval",
        "EDITOR_PULSE_CLI_PATH": "cli_path",
        "EDITOR_PULSE_BATCH_SIZE": "batch_size",
        "EDITOR_PULSE_FLUSH_INTERVAL": "flush_interval",
        "EDITOR_PULSE_MAX_PENDING": "max_pending",
    }

    for env_var, config_key in env_mappings.items():
        value = os.getenv(env_var)
        if value is None:
            continue
        if config_key in _INT_KEYS:
            try:
                env_config[config_key] = int(value)
            except ValueError:
                logger.warning(f"Invalid integer value for {env_var}: {value}")
        elif config_key in _BOOL_KEYS:
            env_config[config_key] = value.lower() in ("true", "1", "yes", "on")
        else:
            env_config[config_key] = value

    return env_config


def get_data_directory() -> Path:
    """Get the per-user data directory for spool files and logs.

    ``EDITOR_PULSE_HOME`` overrides the platform default.
    """
    override = os.getenv("EDITOR_PULSE_HOME")
    if override:
        return Path(override).expanduser()

    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "EditorPulse"
    if sys.platform.startswith("win"):
        appdata = os.getenv("APPDATA")
        return (Path(appdata) if appdata else home) / "EditorPulse"

    xdg_data = os.getenv("XDG_DATA_HOME")
    base = Path(xdg_data) if xdg_data else home / ".local" / "share"
    return base / "editor-pulse"


def load_settings(config_dir: Optional[str] = None) -> Settings:
    """Read the settings file, apply environment overrides, return a snapshot."""
    config = Config(config_dir)
    env_config = load_config_from_env()
    if env_config:
        config.update(env_config)
    return config.settings()
