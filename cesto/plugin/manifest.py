"""
Plugin Manifest Parsing.

This module turns the user's plugin file (cesto.toml) into a plugin forest.

Key features:
- One TOML table per plugin, nested tables declare dependent plugins
- Field validation (location, config, disabled)
- Unique plugin names across the whole forest

Example file:

    [luar]
    location = "https://github.com/gustavo-hms/luar"
    config = "set-option global luar_interpreter luajit"

    [luar.peneira]
    location = "https://github.com/gustavo-hms/peneira"
    disabled = true
"""

import re
from pathlib import Path
from typing import Any

from cesto.config import LOADER_SCRIPT_NAME, STAGING_SUFFIX, STATE_FILE_NAME
from cesto.config.toml_handler import TOMLError, parse_toml, read_toml
from cesto.plugin.errors import ConfigurationError
from cesto.plugin.tree import Forest, PluginNode, parse_location

NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")

# Keys with a meaning of their own; every other key must be a child table.
RESERVED_KEYS = ("location", "config", "disabled")


class ManifestError(ConfigurationError):
    """Raised when the plugin file cannot be read or parsed."""

    pass


class ValidationError(ConfigurationError):
    """Raised when a plugin entry is malformed."""

    pass


class DuplicatePluginError(ValidationError):
    """Raised when two plugins share the same name."""

    pass


def parse_manifest(manifest_path: Path) -> Forest:
    """
    Parse a plugin file.

    Args:
        manifest_path: Path to cesto.toml

    Returns:
        Forest with disablement already propagated

    Raises:
        ManifestError: If the file cannot be read or parsed
        ValidationError: If an entry is invalid
    """
    try:
        data = read_toml(manifest_path)
    except TOMLError as e:
        raise ManifestError(str(e)) from e

    return build_forest(data)


def parse_manifest_text(text: str) -> Forest:
    """Parse plugin declarations from a TOML string."""
    try:
        data = parse_toml(text)
    except TOMLError as e:
        raise ManifestError(str(e)) from e

    return build_forest(data)


def build_forest(data: dict[str, Any]) -> Forest:
    """
    Build a forest from already-decoded TOML data.

    Args:
        data: Mapping of root plugin name -> plugin table

    Returns:
        Forest with disablement already propagated

    Raises:
        ValidationError: If an entry is invalid or a name is repeated
    """
    if not data:
        raise ValidationError("Plugin file declares no plugins")

    seen: set[str] = set()
    roots = []
    for name, table in data.items():
        if not isinstance(table, dict):
            raise ValidationError(f"Unexpected top-level value for '{name}': expected a table")
        roots.append(_build_node(name, table, seen))

    return Forest(roots)


def _build_node(name: str, table: dict[str, Any], seen: set[str]) -> PluginNode:
    if not isinstance(table, dict):
        raise ValidationError(
            f"Unknown field `{name}`: nested plugins must be tables"
        )
    validate_plugin_name(name)

    if name in seen:
        raise DuplicatePluginError(f"Plugin '{name}' is declared more than once")
    seen.add(name)

    validate_plugin_table(name, table)

    children = [
        _build_node(key, value, seen)
        for key, value in table.items()
        if key not in RESERVED_KEYS
    ]

    return PluginNode(
        name=name,
        location=parse_location(table["location"]),
        config_snippet=table.get("config", ""),
        disabled_declared=table.get("disabled", False),
        children=children,
    )


def validate_plugin_name(name: str) -> None:
    """
    Validate a plugin name.

    Names become directory names and editor module names, so they may not
    contain path separators or clash with the files cesto keeps beside them.

    Raises:
        ValidationError: If the name is not usable
    """
    if not NAME_PATTERN.match(name):
        raise ValidationError(
            f"Invalid plugin name: '{name}'. "
            f"Use letters, digits, '.', '_', '+' and '-' only."
        )
    if name in (LOADER_SCRIPT_NAME, STATE_FILE_NAME) or name.endswith(STAGING_SUFFIX):
        raise ValidationError(
            f"Invalid plugin name: '{name}' is reserved for cesto's own files."
        )


def validate_plugin_table(name: str, table: dict[str, Any]) -> None:
    """
    Validate the fields of a single plugin table.

    Args:
        name: Plugin name (for error messages)
        table: The plugin's TOML table

    Raises:
        ValidationError: If a field is missing or has the wrong type
    """
    if "location" not in table:
        raise ValidationError(f"Missing `location` field for plugin {name}")

    location = table["location"]
    if not isinstance(location, str) or not location.strip():
        raise ValidationError(f"Expecting a string for the `location` field of plugin {name}")

    if "config" in table and not isinstance(table["config"], str):
        raise ValidationError(f"Expecting a string for the `config` field of plugin {name}")

    if "disabled" in table and not isinstance(table["disabled"], bool):
        raise ValidationError(f"Expecting a boolean for the `disabled` field of plugin {name}")

    for key, value in table.items():
        if key in RESERVED_KEYS:
            continue
        if not isinstance(value, dict):
            raise ValidationError(f"Unexpected value in plugin {name}: `{key} = {value!r}`")
