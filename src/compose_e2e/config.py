"""Harness configuration management.

Handles configuration stored in ./compose-e2e.yaml (or a file given with
--config). Supports environment variable overrides and CLI flag precedence.
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

# Default values
DEFAULT_BINARY_NAME = "docker"
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_TIMEOUT = 20.0
DEFAULT_REQUEST_TIMEOUT = 5.0
DEFAULT_CONFIG_ENV_VAR = "DOCKER_CONFIG"
DEFAULT_CONFIG_FILE = "compose-e2e.yaml"

# Environment variable mappings
ENV_VARS = {
    "binary_name": "COMPOSE_E2E_BINARY",
    "bin_dir": "COMPOSE_E2E_BIN_DIR",
    "build_command": "COMPOSE_E2E_BUILD_COMMAND",
    "fixtures_dir": "COMPOSE_E2E_FIXTURES_DIR",
    "poll_interval": "COMPOSE_E2E_POLL_INTERVAL",
    "poll_timeout": "COMPOSE_E2E_POLL_TIMEOUT",
    "request_timeout": "COMPOSE_E2E_REQUEST_TIMEOUT",
    "max_parallel": "COMPOSE_E2E_MAX_PARALLEL",
    "config_env_var": "COMPOSE_E2E_CONFIG_ENV_VAR",
    "plugins_dir": "COMPOSE_E2E_PLUGINS_DIR",
    "unique_projects": "COMPOSE_E2E_UNIQUE_PROJECTS",
    "log_level": "COMPOSE_E2E_LOG_LEVEL",
}


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


@dataclass
class HarnessConfig:
    """Harness configuration."""

    binary_name: str = DEFAULT_BINARY_NAME
    bin_dir: Path | None = None
    search_dirs: list[Path] = field(default_factory=lambda: [Path("bin"), Path("../bin")])
    build_command: str | None = None
    fixtures_dir: Path = Path("fixtures")
    poll_interval: float = DEFAULT_POLL_INTERVAL
    poll_timeout: float = DEFAULT_POLL_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_parallel: int = 0
    config_env_var: str | None = DEFAULT_CONFIG_ENV_VAR
    plugins_dir: Path | None = field(default_factory=lambda: Path.home() / ".docker" / "cli-plugins")
    unique_projects: bool = True
    log_level: str = "warning"

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict, repr=False)

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")

    def override(self, source: str = "cli flag", **values: Any) -> "HarnessConfig":
        """Return a copy with non-None values applied on top.

        Args:
            source: Label recorded for every overridden key
            **values: Config keys and raw values

        Returns:
            New HarnessConfig
        """
        updates: dict[str, Any] = {}
        sources = dict(self._sources)
        for key, raw in values.items():
            if raw is None:
                continue
            updates[key] = _coerce(key, raw)
            sources[key] = source
        config = replace(self, **updates)
        config._sources = sources
        return config

    def to_dict(self) -> dict[str, Any]:
        """Plain dict of public values (paths as strings)."""
        data: dict[str, Any] = {}
        for f in fields(self):
            if f.name.startswith("_"):
                continue
            value = getattr(self, f.name)
            if isinstance(value, Path):
                value = str(value)
            elif isinstance(value, list):
                value = [str(v) for v in value]
            data[f.name] = value
        return data


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"Invalid boolean value: {value!r}")


def _coerce(key: str, raw: Any) -> Any:
    """Convert a raw file/env value to the type of the config field."""
    try:
        if key in ("bin_dir", "fixtures_dir", "plugins_dir"):
            return Path(raw).expanduser()
        if key == "search_dirs":
            if isinstance(raw, str):
                raw = [p for p in raw.split(os.pathsep) if p]
            return [Path(p).expanduser() for p in raw]
        if key in ("poll_interval", "poll_timeout", "request_timeout"):
            value = float(raw)
            if value <= 0:
                raise ConfigError(f"{key} must be positive, got {value}")
            return value
        if key == "max_parallel":
            value = int(raw)
            if value < 0:
                raise ConfigError(f"max_parallel must be >= 0, got {value}")
            return value
        if key == "unique_projects":
            return raw if isinstance(raw, bool) else _parse_bool(str(raw))
        if key == "config_env_var":
            return str(raw) or None
        return str(raw)
    except (TypeError, ValueError) as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(f"Invalid value for {key}: {raw!r}") from e


_KEYS = [f.name for f in fields(HarnessConfig) if not f.name.startswith("_")]


def get_config_path(path: str | Path | None = None) -> Path:
    """Get the harness config file path.

    Returns:
        The explicit path if given, else ./compose-e2e.yaml
    """
    return Path(path) if path else Path.cwd() / DEFAULT_CONFIG_FILE


def load_config(path: str | Path | None = None) -> HarnessConfig:
    """Load harness configuration.

    Precedence (highest to lowest):
    1. Environment variables
    2. Config file (./compose-e2e.yaml or the explicit path)
    3. Defaults

    CLI flags are applied afterwards with HarnessConfig.override().

    Raises:
        ConfigError: explicit file missing, unreadable YAML or bad values
    """
    config = HarnessConfig()
    sources: dict[str, str] = {key: "default" for key in _KEYS}
    updates: dict[str, Any] = {}

    config_path = get_config_path(path)
    if config_path.exists():
        try:
            with open(config_path) as f:
                file_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {config_path}: {e}") from e
        if not isinstance(file_config, dict):
            raise ConfigError(f"{config_path} must contain a mapping")

        unknown = sorted(set(file_config) - set(_KEYS))
        if unknown:
            raise ConfigError(f"Unknown config keys in {config_path}: {', '.join(unknown)}")
        for key, raw in file_config.items():
            if raw is None:
                continue
            updates[key] = _coerce(key, raw)
            sources[key] = "config file"
    elif path:
        raise ConfigError(f"Config file not found: {config_path}")

    for key, env_name in ENV_VARS.items():
        if os.environ.get(env_name):
            updates[key] = _coerce(key, os.environ[env_name])
            sources[key] = "environment"

    config = replace(config, **updates)
    config._sources = sources
    return config
