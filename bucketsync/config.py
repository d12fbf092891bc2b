"""Configuration management for bucketsync.

Settings are merged from (lowest to highest precedence) built-in defaults,
the JSON config file and ``BUCKETSYNC_*`` environment variables. The file is
read once and cached until :meth:`Config.save` or :meth:`Config.reload`.
CLI options override the result by passing explicit values to the
components.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "bucketsync" / "config.json"

DEFAULTS: dict[str, Any] = {
    "endpoint_url": "http://localhost:8333",
    "access_key": "minioadmin",
    "secret_key": "minioadmin",
    "region": "us-east-1",
    "bucket": "bucketsync",
    "root_dir": str(Path.home() / ".local" / "share" / "bucketsync" / "files"),
    "stability_threshold": 3.0,
    "poll_interval": 1.0,
    "max_workers": 8,
    "timeout": 30.0,
    "max_attempts": 1,
}

ENV_VARS: dict[str, str] = {
    "endpoint_url": "BUCKETSYNC_ENDPOINT",
    "access_key": "BUCKETSYNC_ACCESS_KEY",
    "secret_key": "BUCKETSYNC_SECRET_KEY",
    "region": "BUCKETSYNC_REGION",
    "bucket": "BUCKETSYNC_BUCKET",
    "root_dir": "BUCKETSYNC_ROOT",
    "stability_threshold": "BUCKETSYNC_STABILITY_THRESHOLD",
    "poll_interval": "BUCKETSYNC_POLL_INTERVAL",
    "max_workers": "BUCKETSYNC_MAX_WORKERS",
    "timeout": "BUCKETSYNC_TIMEOUT",
    "max_attempts": "BUCKETSYNC_MAX_ATTEMPTS",
}

_FLOAT_SETTINGS = {"stability_threshold", "poll_interval", "timeout"}
_INT_SETTINGS = {"max_workers", "max_attempts"}


class Config:
    """Layered settings for the sync engine and object store client."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_path: Path to the JSON config file. Defaults to
                ``BUCKETSYNC_CONFIG`` or ~/.config/bucketsync/config.json
        """
        if config_path is None:
            env_path = os.environ.get("BUCKETSYNC_CONFIG")
            config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
        self.config_path = config_path
        self._file_values: Optional[dict[str, Any]] = None

    def get_config_path(self) -> Path:
        """Return the path of the JSON config file."""
        return self.config_path

    def _load_file(self) -> dict[str, Any]:
        if not self.config_path.exists():
            return {}
        try:
            with open(self.config_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable config file {self.config_path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {self.config_path}: not an object")
            return {}
        return data

    def _stored_values(self) -> dict[str, Any]:
        if self._file_values is None:
            self._file_values = self._load_file()
        return self._file_values

    def reload(self) -> None:
        """Drop the cached file contents so the next lookup reads the file."""
        self._file_values = None

    def _coerce(self, name: str, value: Any) -> Any:
        try:
            if name in _FLOAT_SETTINGS:
                return float(value)
            if name in _INT_SETTINGS:
                return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {name}: {value!r}") from e
        return str(value)

    def get(self, name: str) -> Any:
        """Resolve a single setting.

        Args:
            name: Setting name (one of ``DEFAULTS``)

        Returns:
            The resolved, type-coerced value

        Raises:
            ConfigError: If the name is unknown or the value cannot be coerced
        """
        if name not in DEFAULTS:
            raise ConfigError(f"Unknown setting: {name}")

        env_value = os.environ.get(ENV_VARS[name])
        if env_value is not None and env_value != "":
            return self._coerce(name, env_value)

        file_values = self._stored_values()
        if name in file_values and file_values[name] is not None:
            return self._coerce(name, file_values[name])

        return DEFAULTS[name]

    def as_dict(self) -> dict[str, Any]:
        """Return every resolved setting."""
        return {name: self.get(name) for name in DEFAULTS}

    def save(self, **values: Any) -> Path:
        """Persist settings to the JSON config file.

        Args:
            **values: Settings to store; unknown names raise ConfigError

        Returns:
            Path of the written config file
        """
        for name in values:
            if name not in DEFAULTS:
                raise ConfigError(f"Unknown setting: {name}")

        data = self._load_file()
        data.update({k: self._coerce(k, v) for k, v in values.items()})

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        self._file_values = data
        logger.debug(f"Saved config to {self.config_path}")
        return self.config_path

    @property
    def root_dir(self) -> Path:
        return Path(self.get("root_dir")).expanduser()

    @property
    def bucket(self) -> str:
        return self.get("bucket")

    @property
    def endpoint_url(self) -> str:
        return self.get("endpoint_url")


config = Config()
