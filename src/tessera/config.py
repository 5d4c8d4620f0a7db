"""Configuration loading and validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .paths import DEFAULT_EXTENSION, PACKAGE_MARKER

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/tessera/config.yaml")
DEFAULT_LOG_LEVEL = "info"
CONFIG_ENV_VAR = "TESSERA_CONFIG"


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    debug_file: bool = False
    directory: Path | None = None


@dataclass(frozen=True)
class TesseraConfig:
    """Fully parsed configuration."""

    extension: str = DEFAULT_EXTENSION
    full_backtrace: bool = False
    package_marker: str = PACKAGE_MARKER
    tags: dict[str, Path] = field(default_factory=dict)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    path: Path | None = None


def load_config(path: Path | str | None = None) -> TesseraConfig:
    """Load configuration from YAML; a missing default file yields defaults."""

    config_path, explicit = _resolve_config_path(path)
    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        LOGGER.debug("No config file at %s, using defaults", config_path)
        return TesseraConfig()

    with config_path.open("r", encoding="utf-8") as handle:
        try:
            raw = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping.")

    return _parse_config(raw, config_path)


def _resolve_config_path(explicit: Path | str | None) -> tuple[Path, bool]:
    if explicit:
        return Path(explicit).expanduser(), True
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser(), True
    return DEFAULT_CONFIG_PATH.expanduser(), False


def _parse_config(raw: dict[str, Any], config_path: Path) -> TesseraConfig:
    base_dir = config_path.resolve().parent
    unknown = sorted(set(raw) - {"extension", "full_backtrace", "package_marker", "tags", "logging"})
    if unknown:
        LOGGER.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))
    return TesseraConfig(
        extension=_parse_extension(raw.get("extension")),
        full_backtrace=_parse_bool(raw.get("full_backtrace"), "full_backtrace"),
        package_marker=_parse_marker(raw.get("package_marker")),
        tags=_parse_tags(raw.get("tags"), base_dir),
        logging=_parse_logging(raw.get("logging"), base_dir),
        path=config_path,
    )


def _parse_extension(value: Any) -> str:
    if value is None:
        return DEFAULT_EXTENSION
    if not isinstance(value, str) or not value.strip():
        raise ConfigError("extension must be a non-empty string.")
    text = value.strip()
    return text if text.startswith(".") else f".{text}"


def _parse_bool(value: Any, field_name: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigError(f"{field_name} must be true or false.")
    return value


def _parse_marker(value: Any) -> str:
    if value is None:
        return PACKAGE_MARKER
    if not isinstance(value, str) or not value.strip():
        raise ConfigError("package_marker must be a non-empty string.")
    return value.strip()


def _parse_tags(value: Any, base_dir: Path) -> dict[str, Path]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("tags must be a mapping of tag name to directory.")

    tags: dict[str, Path] = {}
    for name, target in value.items():
        if not isinstance(target, str) or not target:
            raise ConfigError(f"tags.{name} must be a directory path.")
        if "/" in str(name):
            raise ConfigError(f"Tag name '{name}' cannot contain '/'.")
        tags[str(name)] = (base_dir / Path(target).expanduser()).resolve()
    return tags


def _parse_logging(value: Any, base_dir: Path) -> LoggingConfig:
    if value is None:
        return LoggingConfig()
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).lower()
    if level not in {"debug", "info", "warning", "error", "critical"}:
        raise ConfigError(f"Unknown log level '{level}'.")
    debug_file = bool(value.get("debug_file", False))
    directory = value.get("directory")
    log_dir = (base_dir / Path(str(directory)).expanduser()) if directory else None
    return LoggingConfig(level=level, debug_file=debug_file, directory=log_dir)


__all__ = [
    "TesseraConfig",
    "LoggingConfig",
    "ConfigError",
    "load_config",
    "CONFIG_ENV_VAR",
]
