"""
Installed Plugin State Store.

This module persists what a previous run installed.

Key features:
- One record per plugin name (path, revision, location, disabled flag)
- Read once at start, rewritten once at the end of a run
- Atomic replace-on-write, so a killed run leaves the previous state intact
- A missing state file means "nothing installed yet", never an error
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cesto.config.toml_handler import TOMLError, read_toml, write_toml

logger = logging.getLogger(__name__)

STATE_VERSION = 1

STATE_HEADER = (
    "Generated by cesto. Do not edit.\n"
    "Deleting this file is safe: the next run reinstalls every plugin."
)


class StateError(Exception):
    """Raised when the state file cannot be read or written."""

    pass


@dataclass(frozen=True)
class InstalledRecord:
    """
    One previously installed plugin.

    Attributes:
        name: Plugin name
        resolved_path: Directory holding the plugin code
        location: URL or local path the plugin was installed from
        last_revision: Commit hash at last sync (None for local directories)
        disabled: Effective disabled flag at last sync
    """

    name: str
    resolved_path: Path
    location: str
    last_revision: str | None = None
    disabled: bool = False

    @property
    def is_local(self) -> bool:
        return self.last_revision is None

    def to_table(self) -> dict[str, Any]:
        table: dict[str, Any] = {
            "path": str(self.resolved_path),
            "location": self.location,
            "disabled": self.disabled,
        }
        if self.last_revision is not None:
            table["revision"] = self.last_revision
        return table

    @classmethod
    def from_table(cls, name: str, table: dict[str, Any]) -> "InstalledRecord":
        try:
            return cls(
                name=name,
                resolved_path=Path(table["path"]),
                location=str(table.get("location", "")),
                last_revision=table.get("revision"),
                disabled=bool(table.get("disabled", False)),
            )
        except (KeyError, TypeError) as e:
            raise StateError(f"Malformed state record for '{name}': {e}") from e


class StateStore:
    """
    Mapping of plugin name -> InstalledRecord.

    Iteration follows insertion order, which is the order records were
    written by the previous run.
    """

    def __init__(self, records: list[InstalledRecord] | None = None):
        self._records: dict[str, InstalledRecord] = {}
        for record in records or []:
            self.put(record)

    def get(self, name: str) -> InstalledRecord | None:
        return self._records.get(name)

    def put(self, record: InstalledRecord) -> None:
        """Insert or replace the record for record.name."""
        self._records[record.name] = record

    def remove(self, name: str) -> InstalledRecord | None:
        return self._records.pop(name, None)

    def names(self) -> list[str]:
        return list(self._records)

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __iter__(self) -> Iterator[InstalledRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StateStore):
            return NotImplemented
        return list(self._records.items()) == list(other._records.items())

    def __repr__(self) -> str:
        return f"StateStore({list(self._records.values())!r})"


def load_state(state_path: Path, recover: bool = False) -> StateStore:
    """
    Read the state file.

    Args:
        state_path: Path to state.toml
        recover: Start from an empty store instead of failing when the file
            is unreadable; every plugin is then installed again

    Returns:
        StateStore (empty if the file does not exist)

    Raises:
        StateError: If the file exists but cannot be parsed and recover is
            False
    """
    if not state_path.exists():
        logger.debug("No state file at %s, starting from scratch", state_path)
        return StateStore()

    try:
        return _read_state(state_path)
    except StateError as e:
        if not recover:
            raise
        logger.warning("Ignoring unreadable state file, reinstalling every plugin: %s", e)
        return StateStore()


def _read_state(state_path: Path) -> StateStore:
    try:
        data = read_toml(state_path)
    except TOMLError as e:
        raise StateError(str(e)) from e

    version = data.get("version", STATE_VERSION)
    if version != STATE_VERSION:
        raise StateError(f"Unsupported state file version {version} in {state_path}")

    plugins = data.get("plugins", {})
    if not isinstance(plugins, dict):
        raise StateError(f"Malformed state file {state_path}: 'plugins' must be a table")

    store = StateStore()
    for name, table in plugins.items():
        if not isinstance(table, dict):
            raise StateError(f"Malformed state record for '{name}'")
        store.put(InstalledRecord.from_table(name, table))

    logger.debug("Loaded %d state records from %s", len(store), state_path)
    return store


def save_state(state_path: Path, store: StateStore) -> None:
    """
    Rewrite the state file atomically.

    Raises:
        StateError: If the file cannot be written
    """
    data = {
        "version": STATE_VERSION,
        "plugins": {record.name: record.to_table() for record in store},
    }

    try:
        write_toml(state_path, data, header=STATE_HEADER)
    except TOMLError as e:
        raise StateError(str(e)) from e

    logger.debug("Saved %d state records to %s", len(store), state_path)
