"""
cesto Configuration - paths and tunables.

This module provides:
- Path layout derived from HOME / XDG_CONFIG_HOME / XDG_DATA_HOME
- Tunables declared with the schema system
- Settings loading with priority: defaults < settings file < environment

Example usage:
    import cesto.config

    settings = cesto.config.load_settings()
    print(settings.plugin_file)    # ~/.config/cesto.toml
    print(settings.git_timeout)    # 120
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field as dataclass_field
from pathlib import Path
from typing import Any

from cesto.config.schema import (
    ConfigField,
    ValidationError,
    generate_default_config,
    validate_config,
)
from cesto.config.toml_handler import TOMLError, read_toml
from cesto.core.utils import remove_tree

logger = logging.getLogger(__name__)

APP_NAME = "cesto"

# File names cesto itself uses next to plugin directories.
LOADER_SCRIPT_NAME = f"{APP_NAME}.kak"
STATE_FILE_NAME = "state.toml"
STAGING_SUFFIX = f".{APP_NAME}-tmp"

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


class ConfigError(Exception):
    """Base exception for settings errors."""

    pass


def field(
    type_: type,
    default: Any,
    description: str = "",
    min: int | None = None,
    max: int | None = None,
    choices: list[Any] | None = None,
) -> ConfigField:
    """
    Helper function to create a ConfigField.

    Example:
        field(int, 120, "Timeout for a single git command", min=1)
    """
    return ConfigField(
        type_=type_,
        default=default,
        description=description,
        min=min,
        max=max,
        choices=choices,
    )


SETTINGS_SCHEMA: dict[str, ConfigField] = {
    "git_timeout": field(int, 120, "Seconds a single git command may run", min=1, max=3600),
    "jobs": field(int, 0, "Maximum concurrent plugin jobs (0 = one per plugin)", min=0, max=256),
    "probe_remotes": field(
        bool, True, "Ask remotes for their head before scheduling updates"
    ),
    "log_level": field(str, "WARNING", "Logging verbosity", choices=LOG_LEVELS),
}

# Environment variables that override settings file values.
ENV_OVERRIDES = {
    "git_timeout": "CESTO_GIT_TIMEOUT",
    "jobs": "CESTO_JOBS",
    "probe_remotes": "CESTO_PROBE_REMOTES",
    "log_level": "CESTO_LOG_LEVEL",
}


@dataclass
class Settings:
    """
    Resolved paths and tunables for one run.

    Attributes:
        plugin_file: The user's plugin declarations (cesto.toml)
        settings_file: Optional tunables file
        data_dir: Directory where remote plugins are cloned
        state_file: Persisted record of installed plugins
        autoload_dir: Kakoune's autoload directory
        autoload_plugins_dir: cesto's subdirectory inside autoload
        loader_script: The generated script Kakoune sources at startup
    """

    plugin_file: Path
    settings_file: Path
    data_dir: Path
    state_file: Path
    autoload_dir: Path
    autoload_plugins_dir: Path
    loader_script: Path
    git_timeout: int = 120
    jobs: int = 0
    probe_remotes: bool = True
    log_level: str = "WARNING"
    env: dict[str, str] = dataclass_field(default_factory=dict)

    def plugin_path(self, name: str) -> Path:
        """Deterministic clone location for a remote plugin."""
        return self.data_dir / name

    def link_path(self, name: str) -> Path:
        """Location of a plugin's activation link inside autoload."""
        return self.autoload_plugins_dir / name

    def create_dirs(self) -> None:
        """
        Prepare the directory layout for a run.

        The autoload subdirectory is recreated empty, so links and the loader
        script always reflect the current configuration only.

        Raises:
            ConfigError: If a directory cannot be created
        """
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self.autoload_dir.mkdir(parents=True, exist_ok=True)

            if self.autoload_plugins_dir.exists() or self.autoload_plugins_dir.is_symlink():
                remove_tree(self.autoload_plugins_dir)

            self.autoload_plugins_dir.mkdir(parents=True)
        except OSError as e:
            raise ConfigError(f"Failed to prepare directories: {e}") from e


def _get_var(env: Mapping[str, str], name: str) -> str | None:
    value = env.get(name)
    return value if value else None


def resolve_paths(env: Mapping[str, str] | None = None) -> dict[str, Path]:
    """
    Derive cesto's path layout from the environment.

    Args:
        env: Environment mapping (defaults to os.environ)

    Returns:
        Dictionary of Settings path fields

    Raises:
        ConfigError: If HOME is not set
    """
    env = os.environ if env is None else env

    home = _get_var(env, "HOME")
    if home is None:
        raise ConfigError("Could not read HOME environment variable")
    home_path = Path(home)

    config_var = _get_var(env, "XDG_CONFIG_HOME")
    config_dir = Path(config_var) if config_var else home_path / ".config"

    data_var = _get_var(env, "XDG_DATA_HOME")
    data_root = Path(data_var) if data_var else home_path / ".local" / "share"
    data_dir = data_root / APP_NAME

    autoload_dir = config_dir / "kak" / "autoload"
    autoload_plugins_dir = autoload_dir / APP_NAME

    return {
        "plugin_file": config_dir / f"{APP_NAME}.toml",
        "settings_file": config_dir / APP_NAME / "settings.toml",
        "data_dir": data_dir,
        "state_file": data_dir / STATE_FILE_NAME,
        "autoload_dir": autoload_dir,
        "autoload_plugins_dir": autoload_plugins_dir,
        "loader_script": autoload_plugins_dir / LOADER_SCRIPT_NAME,
    }


def load_settings(
    env: Mapping[str, str] | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """
    Load settings with priority: overrides > environment > settings file > defaults.

    Args:
        env: Environment mapping (defaults to os.environ)
        overrides: Values given on the command line

    Returns:
        Settings instance

    Raises:
        ConfigError: If the settings file or an environment value is invalid
    """
    env = os.environ if env is None else env
    paths = resolve_paths(env)

    values = generate_default_config(SETTINGS_SCHEMA)

    settings_file = paths["settings_file"]
    if settings_file.exists():
        try:
            data = read_toml(settings_file)
            table = data.get(APP_NAME, {})
            if not isinstance(table, dict):
                raise ValidationError(f"[{APP_NAME}] must be a table")
            validate_config(table, SETTINGS_SCHEMA)
        except (TOMLError, ValidationError) as e:
            raise ConfigError(f"Invalid settings file {settings_file}: {e}") from e
        values.update(table)
        logger.debug("Loaded settings from %s", settings_file)

    for name, var in ENV_OVERRIDES.items():
        raw = _get_var(env, var)
        if raw is None:
            continue
        try:
            values[name] = SETTINGS_SCHEMA[name].coerce(raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid value for {var}: {e}") from e

    for name, value in (overrides or {}).items():
        if value is None:
            continue
        if name in SETTINGS_SCHEMA:
            try:
                SETTINGS_SCHEMA[name].validate(value)
            except ValidationError as e:
                raise ConfigError(f"Invalid value for {name}: {e}") from e
            values[name] = value
        elif name in paths:
            paths[name] = Path(value).expanduser()
        else:
            raise ConfigError(f"Unknown setting: {name}")

    return Settings(**paths, **values, env=dict(env))


__all__ = [
    "APP_NAME",
    "ConfigError",
    "LOADER_SCRIPT_NAME",
    "SETTINGS_SCHEMA",
    "STAGING_SUFFIX",
    "STATE_FILE_NAME",
    "Settings",
    "field",
    "load_settings",
    "resolve_paths",
]
