"""Settings loaded from an optional YAML file, overridden by environment variables."""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path("settings.yaml")
ENV_PREFIX = "METADATA_INDEXER_"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class IndexerSettings:
    """Runtime settings for the CLI and the live block scanner."""
    rpc_url: Optional[str] = None
    poll_interval: float = 2.0
    confirmations: int = 0
    request_timeout: float = 30.0
    log_level: str = "WARNING"
    log_file: Optional[str] = None

    def validate(self) -> None:
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if self.confirmations < 0:
            raise ConfigurationError("confirmations must be non-negative")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level: {self.log_level}")


def _coerce(name: str, value: Any, target: Any) -> Any:
    try:
        if target is float:
            return float(value)
        if target is int:
            return int(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e


def load_settings(path: Optional[Union[str, Path]] = None,
                  environ: Optional[Dict[str, str]] = None) -> IndexerSettings:
    """
    Load settings from YAML, then apply ``METADATA_INDEXER_*`` environment overrides.

    Keys in the YAML file match the :class:`IndexerSettings` field names. A
    missing file is not an error unless ``path`` was given explicitly.

    Raises:
        ConfigurationError: If the file is unreadable or a value is invalid
    """
    environ = os.environ if environ is None else environ
    settings_path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH

    raw: Dict[str, Any] = {}
    if settings_path.exists():
        try:
            with open(settings_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot load {settings_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{settings_path} must contain a mapping")
        logger.debug("Loaded settings from %s", settings_path)
    elif path is not None:
        raise ConfigurationError(f"Settings file not found: {settings_path}")

    known = {f.name for f in fields(IndexerSettings)}
    values: Dict[str, Any] = {}
    for name, value in raw.items():
        if name not in known:
            logger.warning("Ignoring unknown setting %r", name)
            continue
        if value is None:
            continue
        values[name] = value

    # Environment variables override file settings
    for name in known:
        env_value = environ.get(ENV_PREFIX + name.upper())
        if env_value:
            values[name] = env_value

    targets = {
        "poll_interval": float,
        "request_timeout": float,
        "confirmations": int,
    }
    for name, value in list(values.items()):
        values[name] = _coerce(name, value, targets.get(name, str))

    settings = IndexerSettings(**values)
    settings.validate()
    return settings
