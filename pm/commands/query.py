"""
cesto query command (-Q).

List configured plugins as a tree with their status and installed revision.
"""

from typing import Any

from cesto.config import Settings
from cesto.plugin.manifest import parse_manifest
from cesto.plugin.state import StateStore, load_state
from cesto.plugin.tree import Forest, PluginNode


def query_command(args: Any, settings: Settings) -> int:
    """
    Execute query command.

    Args:
        args: Parsed command-line arguments
        settings: Resolved settings

    Returns:
        Exit code (1 when a requested plugin is not configured)
    """
    from pm.cli import PMError

    forest = parse_manifest(settings.plugin_file)
    state = load_state(settings.state_file, recover=True)

    missing = [name for name in args.targets if forest.find(name) is None]
    if missing:
        raise PMError(f"Plugin not configured: {', '.join(missing)}")

    print(format_tree(forest, state, set(args.targets) or None), end="")
    return 0


def format_tree(forest: Forest, state: StateStore, only: set[str] | None = None) -> str:
    """
    Render configured plugins, children indented under their parent.

    Args:
        forest: Plugin forest
        state: Installed state, for revisions
        only: Restrict output to these plugin names

    Returns:
        Listing text
    """
    depths = forest.depth_of()
    lines = []
    for node, _ in forest.walk():
        if only is not None and node.name not in only:
            continue
        indent = "  " * depths[node.name]
        lines.append(f"{indent}{node.name} {_revision(node, state)} [{_status(node)}]")

    return "\n".join(lines) + "\n" if lines else ""


def _status(node: PluginNode) -> str:
    if node.disabled_declared:
        return "disabled"
    if node.disabled_effective:
        return "disabled (inherited)"
    return "enabled"


def _revision(node: PluginNode, state: StateStore) -> str:
    if node.is_local:
        return "local"
    record = state.get(node.name)
    if record is None or record.last_revision is None:
        return "not installed"
    return record.last_revision[:7]
