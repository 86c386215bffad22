"""
cesto - a plugin manager for the Kakoune editor.

This is the main package that exports the public API for cesto.
"""

__version__ = "0.1.0"

from types import SimpleNamespace

from cesto.config import Settings, load_settings
from cesto.plugin import loader, manager, manifest, reconcile as reconcile_module, report, state

# Plugin API namespace
plugins = SimpleNamespace(
    parse=manifest.parse_manifest,
    load_state=state.load_state,
    reconcile=reconcile_module.reconcile,
    probe=manager.probe_remote_heads,
    WorkerManager=manager.WorkerManager,
    generate=loader.generate,
    write_loader_script=loader.write_loader_script,
    render_report=report.render_report,
)

__all__ = [
    "__version__",
    "Settings",
    "load_settings",
    "plugins",
]
