"""
Plugin Error Taxonomy.

This module defines the exceptions raised while managing plugins.

Key features:
- Fatal configuration errors (stop the run before any work starts)
- Per-plugin errors (isolated to one plugin, reported at the end)
- Conversion of per-plugin errors into report failures
"""

from dataclasses import dataclass


class CestoError(Exception):
    """Base exception for cesto errors."""

    pass


class ConfigurationError(CestoError):
    """Raised when the plugin configuration cannot be used at all."""

    pass


class PluginError(CestoError):
    """
    Base exception for errors isolated to a single plugin.

    Attributes:
        name: Name of the plugin the error belongs to
        message: Human-readable description
    """

    kind = "plugin"

    def __init__(self, name: str, message: str):
        self.name = name
        self.message = message
        super().__init__(f"{name}: {message}")


class FetchError(PluginError):
    """Raised when a clone, fetch or other git query fails."""

    kind = "fetch"


class DivergedHistoryError(PluginError):
    """Raised when an update cannot be fast-forwarded."""

    kind = "diverged"


class FilesystemError(PluginError):
    """Raised when a plugin directory or link cannot be changed."""

    kind = "filesystem"


class MissingLocalPathError(PluginError):
    """Raised when a local plugin directory does not exist."""

    kind = "configuration"


@dataclass(frozen=True)
class PluginFailure:
    """
    A per-plugin failure as it appears in the report.

    Attributes:
        kind: Error category (fetch, diverged, filesystem, configuration)
        message: Human-readable description
    """

    kind: str
    message: str

    @classmethod
    def from_error(cls, error: PluginError) -> "PluginFailure":
        return cls(kind=error.kind, message=error.message)
