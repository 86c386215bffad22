"""
cesto sync command (-S).

Reconcile the plugin file with what is installed: clone new plugins,
update existing ones, remove orphans, then regenerate the loader script.
"""

import logging
from typing import Any

from cesto.config import Settings
from cesto.plugin.loader import write_loader_script
from cesto.plugin.manager import WorkerManager, probe_remote_heads
from cesto.plugin.manifest import parse_manifest
from cesto.plugin.reconcile import Classification, Reconciliation, reconcile
from cesto.plugin.report import render_report
from cesto.plugin.state import load_state

logger = logging.getLogger(__name__)

_PLAN_LABELS = {
    Classification.NEW: "install",
    Classification.NEEDS_UPDATE: "update",
    Classification.UNCHANGED: "keep",
}


def sync_command(args: Any, settings: Settings) -> int:
    """
    Execute sync command.

    Args:
        args: Parsed command-line arguments
        settings: Resolved settings

    Returns:
        Exit code (0 when every plugin synced, 1 otherwise)
    """
    forest = parse_manifest(settings.plugin_file)
    state = load_state(settings.state_file, recover=True)

    remote_heads = None
    if settings.probe_remotes:
        remote_heads = probe_remote_heads(forest, state, settings)

    reconciliation = reconcile(forest, state, remote_heads)

    if args.plan:
        print(format_plan(reconciliation), end="")
        return 0 if not reconciliation.diagnostics else 1

    settings.create_dirs()
    write_loader_script(forest, settings.loader_script)

    report = WorkerManager(settings).run(reconciliation, forest)
    print(render_report(report), end="")

    if not report.ok:
        logger.debug("Failed plugins: %s", ", ".join(report.errors))
        return 1
    return 0


def format_plan(reconciliation: Reconciliation) -> str:
    """
    Describe what a sync would do, one line per plugin.

    Args:
        reconciliation: Result of reconcile()

    Returns:
        Plan text
    """
    lines = []
    for entry in reconciliation.classified:
        label = _PLAN_LABELS[entry.classification]
        if entry.node.is_local:
            label = "local"
        suffix = " (disabled)" if entry.node.disabled_effective else ""
        lines.append(f"{label:>8} {entry.name}{suffix}")

    for record in reconciliation.retired:
        lines.append(f"{'remove':>8} {record.name} (clone at {record.resolved_path})")

    for record in reconciliation.orphans:
        lines.append(f"{'remove':>8} {record.name}")

    for name, failure in reconciliation.diagnostics.items():
        lines.append(f"warning: {name}: {failure.message}")

    if not lines:
        return "Nothing to do.\n"
    return "\n".join(lines) + "\n"
