"""
Plugin Tree Model.

This module provides the in-memory forest of configured plugins.

Key features:
- Remote repository and local directory locations
- Ordered children (declaration order is load order)
- Single-pass disablement propagation
- Pre-order traversal with a transient parent pointer
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

REMOTE_PREFIXES = ("https://", "http://", "ssh://", "git://", "file://", "git@")


@dataclass(frozen=True)
class RemoteRepository:
    """A plugin fetched from a git remote."""

    url: str

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True)
class LocalDirectory:
    """A plugin living in a directory the user manages."""

    path: Path

    def __str__(self) -> str:
        return str(self.path)


Location = RemoteRepository | LocalDirectory


def parse_location(location: str) -> Location:
    """
    Build a location from its configured string form.

    Args:
        location: URL of a git repository or path of a local directory

    Returns:
        RemoteRepository for URLs, LocalDirectory otherwise
    """
    location = location.strip()
    if location.startswith(REMOTE_PREFIXES):
        return RemoteRepository(location)
    return LocalDirectory(Path(location).expanduser())


@dataclass
class PluginNode:
    """
    One configured plugin.

    Attributes:
        name: Unique plugin name, also the editor module name
        location: Where the plugin code comes from
        config_snippet: Script text run once the plugin is loaded
        disabled_declared: Disabled flag as written in the configuration
        disabled_effective: Declared flag OR any ancestor's effective flag
        children: Plugins loaded after this one, in declaration order
    """

    name: str
    location: Location
    config_snippet: str = ""
    disabled_declared: bool = False
    disabled_effective: bool = False
    children: list["PluginNode"] = field(default_factory=list)

    @property
    def is_local(self) -> bool:
        return isinstance(self.location, LocalDirectory)

    @property
    def enabled_children(self) -> list["PluginNode"]:
        return [child for child in self.children if not child.disabled_effective]


class Forest:
    """
    Ordered collection of plugin trees.

    The forest exclusively owns its nodes. Nodes keep no reference to their
    parent; walks hand out the parent alongside each node instead.
    """

    def __init__(self, roots: list[PluginNode] | None = None):
        self.roots: list[PluginNode] = list(roots or [])
        self.propagate_disablement()

    def walk(self) -> Iterator[tuple[PluginNode, PluginNode | None]]:
        """
        Iterate over all nodes in pre-order.

        Parents come before their children and siblings keep declaration
        order.

        Yields:
            Tuples of (node, parent), parent is None for roots
        """
        stack: list[tuple[PluginNode, PluginNode | None]] = [
            (root, None) for root in reversed(self.roots)
        ]
        while stack:
            node, parent = stack.pop()
            yield node, parent
            stack.extend((child, node) for child in reversed(node.children))

    def nodes(self) -> list[PluginNode]:
        return [node for node, _ in self.walk()]

    def names(self) -> list[str]:
        return [node.name for node, _ in self.walk()]

    def find(self, name: str) -> PluginNode | None:
        for node, _ in self.walk():
            if node.name == name:
                return node
        return None

    def declaration_order(self) -> dict[str, int]:
        """Map each plugin name to its position in the pre-order walk."""
        return {name: index for index, name in enumerate(self.names())}

    def enabled_nodes(self) -> list[PluginNode]:
        return [node for node, _ in self.walk() if not node.disabled_effective]

    def propagate_disablement(self) -> None:
        """
        Compute disabled_effective for every node in one pass.

        Pre-order guarantees a parent's effective flag is final before any
        of its children is visited.
        """
        for node, parent in self.walk():
            inherited = parent.disabled_effective if parent is not None else False
            node.disabled_effective = node.disabled_declared or inherited

    def depth_of(self) -> dict[str, int]:
        """Map each plugin name to its depth (roots are at depth 0)."""
        depths: dict[str, int] = {}
        for node, parent in self.walk():
            depths[node.name] = 0 if parent is None else depths[parent.name] + 1
        return depths

    def __len__(self) -> int:
        return sum(1 for _ in self.walk())
