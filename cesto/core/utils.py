"""
Utils Module - Filesystem helpers shared by the state store and the loader.

This module provides:
- atomic_write_text(): Replace a file so readers only ever see old or new content
- remove_tree(): Delete a directory tree, tolerating read-only git objects
"""

import logging
import os
import shutil
import stat
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class UtilsError(Exception):
    """Base exception for utils-related errors."""

    pass


def atomic_write_text(path: Path, content: str) -> None:
    """
    Write a text file atomically.

    The content goes to a temporary file in the same directory, which is
    flushed, synced and then renamed over the target.

    Args:
        path: Destination file
        content: Text to write (UTF-8)

    Raises:
        UtilsError: If the file cannot be written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise UtilsError(f"Failed to write {path}: {e}") from e

    logger.debug("Wrote %s (%d bytes)", path, len(content))


def remove_tree(path: Path) -> None:
    """
    Remove a directory tree.

    Git marks pack files read-only, so permissions are relaxed and the
    removal retried when the first attempt is refused.

    Raises:
        OSError: If the tree cannot be removed
    """

    def _on_error(func, failed_path, _exc):
        os.chmod(failed_path, stat.S_IWRITE)
        func(failed_path)

    if path.is_symlink() or path.is_file():
        path.unlink()
        return

    shutil.rmtree(path, onexc=_on_error)
