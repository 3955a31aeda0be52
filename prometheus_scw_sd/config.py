"""Configuration sections, the YAML loader and CLI override merging."""

from __future__ import annotations

import dataclasses
import os
import re
import typing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

# ${VAR} or ${VAR:-fallback}
_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")


@dataclass(frozen=True)
class ScalewayConfig:
    token: str = ""
    zones: list[str] = field(default_factory=lambda: ["fr-par-1", "nl-ams-1"])
    api_url: str = "https://api.scaleway.com"
    timeout: int = 30
    per_page: int = 50


@dataclass(frozen=True)
class DiscoveryConfig:
    private: bool = False  # scrape the private IP instead of the public one
    port: int = 9100
    interval_seconds: int = 90
    tag_separator: str = ","


@dataclass(frozen=True)
class OutputConfig:
    file: str = "scw_sd.json"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "logfmt"  # "logfmt" or "json"


@dataclass(frozen=True)
class AppConfig:
    scaleway: ScalewayConfig = field(default_factory=ScalewayConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _expand_env(value: Any, where: str) -> Any:
    """Expand ${VAR} and ${VAR:-fallback} in every string of a YAML tree."""
    if isinstance(value, dict):
        return {k: _expand_env(v, f"{where}.{k}" if where else str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v, where) for v in value]
    if not isinstance(value, str):
        return value

    def _lookup(match: re.Match) -> str:
        name, fallback = match.group("name"), match.group("fallback")
        resolved = os.environ.get(name, fallback)
        if resolved is None:
            raise ConfigError(f"{where}: environment variable '{name}' is not set")
        return resolved

    return _ENV_REF.sub(_lookup, value)


def _check_type(value: Any, hint: Any, where: str) -> None:
    if typing.get_origin(hint) is list:
        (item_type,) = typing.get_args(hint)
        if not isinstance(value, list) or not all(isinstance(v, item_type) for v in value):
            raise ConfigError(f"{where} must be a list of {item_type.__name__}")
        return
    # bool is an int subclass; "port: true" is still a mistake
    if isinstance(value, bool) and hint is not bool:
        raise ConfigError(f"{where} must be {hint.__name__}, got a boolean")
    if not isinstance(value, hint):
        raise ConfigError(f"{where} must be {hint.__name__}, got {type(value).__name__}")


def _build_section(cls: type, data: Any, where: str) -> Any:
    """Build one config dataclass from a mapping, rejecting unknown keys and wrong types."""
    if not isinstance(data, dict):
        raise ConfigError(f"{where or 'Configuration file'} must be a YAML mapping")

    hints = typing.get_type_hints(cls)
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        path = f"{where}.{key}" if where else str(key)
        if key not in hints:
            raise ConfigError(f"Unknown configuration key: {path}")
        hint = hints[key]
        if dataclasses.is_dataclass(hint):
            kwargs[key] = _build_section(hint, value, path)
        else:
            _check_type(value, hint, path)
            kwargs[key] = value
    return cls(**kwargs)


def _read_yaml(path: str | Path) -> AppConfig:
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    return _build_section(AppConfig, _expand_env(raw or {}, ""), "")


def build_config(path: str | Path | None = None, overrides: dict[str, dict[str, Any]] | None = None) -> AppConfig:
    """Build the effective configuration: defaults, then the YAML file, then overrides.

    ``overrides`` maps a section name ("scaleway", "discovery", ...) to the
    fields to replace in it. ``None`` values are ignored so that unset CLI
    flags do not clobber file values.
    """
    config = _read_yaml(path) if path else AppConfig()

    for section, values in (overrides or {}).items():
        changes = {k: v for k, v in values.items() if v is not None}
        if changes:
            current = getattr(config, section)
            config = dataclasses.replace(config, **{section: dataclasses.replace(current, **changes)})

    validate(config)
    return config


def validate(config: AppConfig) -> None:
    """Check value ranges; types were already checked while loading."""
    scw, disc = config.scaleway, config.discovery

    if not scw.token:
        raise ConfigError("scaleway.token is required (use --token or the config file)")
    if not scw.zones:
        raise ConfigError("scaleway.zones must list at least one zone")
    if scw.per_page < 1:
        raise ConfigError("scaleway.per_page must be >= 1")
    if scw.timeout < 1:
        raise ConfigError("scaleway.timeout must be >= 1")

    if not 1 <= disc.port <= 65535:
        raise ConfigError("discovery.port must be between 1 and 65535")
    if disc.interval_seconds < 1:
        raise ConfigError("discovery.interval_seconds must be >= 1")
    if not disc.tag_separator:
        raise ConfigError("discovery.tag_separator must not be empty")

    if not config.output.file:
        raise ConfigError("output.file is required")
    if config.logging.format not in ("logfmt", "json"):
        raise ConfigError("logging.format must be 'logfmt' or 'json'")
