"""
Loader Script Generator.

This module renders the Kakoune script that loads plugins at startup.

Key features:
- Pure, deterministic tree -> text rendering
- Children are requested only from inside their parent's ModuleLoaded hook
- Per-plugin config snippets run once the plugin's module has loaded
- Disabled plugins (and everything below them) are left out

A plugin `luar` with a config snippet and a child `peneira` renders as:

    hook -once global ModuleLoaded luar %[
    set-option global luar_interpreter luajit
        try %[ require-module peneira ]
    ]
    try %[ require-module luar ] catch %[
        provide-module luar ''
        require-module luar
    ]
"""

import logging
from pathlib import Path

from cesto.core.utils import UtilsError, atomic_write_text
from cesto.plugin.tree import Forest, PluginNode

logger = logging.getLogger(__name__)

# Run the whole script once Kakoune has sourced every autoload file. The
# basket is an unlikely character to appear inside user snippets.
SCRIPT_OPEN = "hook global KakBegin .* %🧺\n"
SCRIPT_CLOSE = "🧺\n"

INDENT = "    "


class LoaderError(Exception):
    """Base exception for loader script errors."""

    pass


def generate(forest: Forest) -> str:
    """
    Render the loader script for a forest.

    Args:
        forest: Plugin forest with disablement already propagated

    Returns:
        The complete script text
    """
    lines: list[str] = []
    for root in forest.roots:
        lines.extend(_stanza(root, 0))

    return SCRIPT_OPEN + "".join(lines) + SCRIPT_CLOSE


def write_loader_script(forest: Forest, script_path: Path) -> str:
    """
    Regenerate the loader script file in full.

    Args:
        forest: Plugin forest
        script_path: Destination file

    Returns:
        The written script text

    Raises:
        LoaderError: If the file cannot be written
    """
    script = generate(forest)
    try:
        atomic_write_text(script_path, script)
    except UtilsError as e:
        raise LoaderError(f"Couldn't write loader script: {e}") from e

    logger.info("Wrote loader script %s", script_path)
    return script


def _stanza(node: PluginNode, depth: int) -> list[str]:
    if node.disabled_effective:
        return []

    # Local code is already sourced through its autoload link, so there is
    # no module to wait for: snippet and children run in place.
    if node.is_local:
        lines = _snippet(node.config_snippet)
        for child in node.enabled_children:
            lines.extend(_stanza(child, depth))
        return lines

    pad = INDENT * depth
    body = _snippet(node.config_snippet)
    for child in node.enabled_children:
        body.extend(_stanza(child, depth + 1))

    if not body:
        return [f"{pad}try %[ require-module {node.name} ]\n"]

    return [
        f"{pad}hook -once global ModuleLoaded {_hook_filter(node.name)} %[\n",
        *body,
        f"{pad}]\n",
        f"{pad}try %[ require-module {node.name} ] catch %[\n",
        f"{pad}{INDENT}provide-module {node.name} ''\n",
        f"{pad}{INDENT}require-module {node.name}\n",
        f"{pad}]\n",
    ]


def _snippet(config_snippet: str) -> list[str]:
    """Config snippets are opaque: emitted verbatim, never re-indented."""
    if not config_snippet.strip():
        return []
    if not config_snippet.endswith("\n"):
        config_snippet += "\n"
    return [config_snippet]


def _hook_filter(name: str) -> str:
    """Hook filters are regexes; escape the name characters that are special."""
    return name.replace(".", "\\.").replace("+", "\\+")
