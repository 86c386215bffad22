"""
Reconciliation of configuration against installed state.

This module classifies every configured plugin against the state store.

Key features:
- New / Unchanged / NeedsUpdate classification per plugin
- Orphan detection for records no longer configured
- Changed URLs are re-cloned instead of mixing histories
- Missing local directories diagnosed per plugin, never fatal
- Clones of plugins switched to a local directory are retired
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from cesto.plugin.errors import MissingLocalPathError, PluginFailure
from cesto.plugin.state import InstalledRecord, StateStore
from cesto.plugin.tree import Forest, LocalDirectory, PluginNode, RemoteRepository

logger = logging.getLogger(__name__)


class Classification(Enum):
    """What a run has to do for a plugin."""

    NEW = "new"
    UNCHANGED = "unchanged"
    NEEDS_UPDATE = "needs-update"
    ORPHANED = "orphaned"


@dataclass(frozen=True)
class ClassifiedNode:
    """
    A configured plugin with its classification.

    Attributes:
        node: The plugin node
        classification: NEW, UNCHANGED or NEEDS_UPDATE
        record: Previous state record, if any
        unreachable: True when disabled only because an ancestor is
    """

    node: PluginNode
    classification: Classification
    record: InstalledRecord | None = None
    unreachable: bool = False

    @property
    def name(self) -> str:
        return self.node.name

    @property
    def needs_work(self) -> bool:
        """True when a worker must clone or update this plugin."""
        return isinstance(self.node.location, RemoteRepository) and self.classification in (
            Classification.NEW,
            Classification.NEEDS_UPDATE,
        )


@dataclass
class Reconciliation:
    """
    Result of reconciling a forest against the state store.

    Attributes:
        classified: One entry per configured plugin, in declaration order
        orphans: Records with no configured plugin, in state file order
        retired: Clones left behind by plugins now loaded from a local
            directory; they are deleted like orphans
        diagnostics: Per-plugin problems found without doing any I/O work
    """

    classified: list[ClassifiedNode] = field(default_factory=list)
    orphans: list[InstalledRecord] = field(default_factory=list)
    retired: list[InstalledRecord] = field(default_factory=list)
    diagnostics: dict[str, PluginFailure] = field(default_factory=dict)

    def get(self, name: str) -> ClassifiedNode | None:
        for entry in self.classified:
            if entry.name == name:
                return entry
        return None

    def by_classification(self, classification: Classification) -> list[ClassifiedNode]:
        return [entry for entry in self.classified if entry.classification == classification]

    @property
    def scheduled(self) -> list[str]:
        """Names of plugins that need a worker, removals included."""
        names = [entry.name for entry in self.classified if entry.needs_work]
        names.extend(record.name for record in self.retired)
        names.extend(record.name for record in self.orphans)
        return names


def reconcile(
    forest: Forest,
    previous_state: StateStore,
    remote_heads: dict[str, str] | None = None,
) -> Reconciliation:
    """
    Classify every plugin of the forest against the previous state.

    Disabled plugins are classified exactly like enabled ones: they are
    still fetched, disablement only affects the generated loader script.

    Args:
        forest: Current plugin configuration
        previous_state: Records written by the previous run
        remote_heads: Optional name -> remote head revision; when a probed
            head equals the recorded revision the plugin is UNCHANGED

    Returns:
        Reconciliation result
    """
    forest.propagate_disablement()
    remote_heads = remote_heads or {}
    result = Reconciliation()

    for node, _ in forest.walk():
        # Effective without declared can only come from an ancestor.
        unreachable = node.disabled_effective and not node.disabled_declared
        record = previous_state.get(node.name)

        if isinstance(node.location, LocalDirectory):
            classification = Classification.UNCHANGED
            if not node.location.path.is_dir():
                error = MissingLocalPathError(
                    node.name, f"the path {node.location.path} does not exist"
                )
                result.diagnostics[node.name] = PluginFailure.from_error(error)
                logger.warning("%s", error)
            elif record is not None and not record.is_local and not _same_path(
                record.resolved_path, node.location.path
            ):
                logger.info("%s: now loaded from %s, retiring its clone", node.name, node.location.path)
                result.retired.append(record)
        else:
            classification = _classify_remote(node, record, remote_heads.get(node.name))

        result.classified.append(
            ClassifiedNode(
                node=node,
                classification=classification,
                record=record,
                unreachable=unreachable,
            )
        )

    configured = set(forest.names())
    result.orphans = [record for record in previous_state if record.name not in configured]

    logger.debug(
        "Reconciled %d plugins, %d orphans, %d scheduled",
        len(result.classified),
        len(result.orphans),
        len(result.scheduled),
    )
    return result


def _same_path(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return False


def _classify_remote(
    node: PluginNode, record: InstalledRecord | None, remote_head: str | None
) -> Classification:
    if record is None or record.is_local:
        return Classification.NEW

    if record.location != node.location.url:
        logger.info(
            "%s: location changed from %s to %s, re-cloning",
            node.name,
            record.location,
            node.location.url,
        )
        return Classification.NEW

    if not record.resolved_path.is_dir():
        return Classification.NEW

    if remote_head is not None and remote_head == record.last_revision:
        return Classification.UNCHANGED

    return Classification.NEEDS_UPDATE
