"""
TOML File I/O Handler.

This module provides TOML parsing and writing.

Key features:
- Parse TOML files using tomllib
- Write TOML files using tomlkit, atomically (temp file + rename)
- Keep table order, which carries plugin load order
"""

import tomllib
from pathlib import Path
from typing import Any

import tomlkit

from cesto.core.utils import UtilsError, atomic_write_text


class TOMLError(Exception):
    """Base exception for TOML-related errors."""

    pass


def read_toml(file_path: Path) -> dict[str, Any]:
    """
    Read and parse a TOML file.

    Args:
        file_path: Path to the TOML file

    Returns:
        Parsed TOML data as dictionary

    Raises:
        TOMLError: If file cannot be read or parsed
    """
    try:
        with open(file_path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise TOMLError(f"TOML file not found: {file_path}") from e
    except tomllib.TOMLDecodeError as e:
        raise TOMLError(f"Failed to parse TOML file {file_path}: {e}") from e
    except OSError as e:
        raise TOMLError(f"Failed to read TOML file {file_path}: {e}") from e


def parse_toml(text: str) -> dict[str, Any]:
    """
    Parse TOML from a string.

    Raises:
        TOMLError: If the text is not valid TOML
    """
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise TOMLError(f"Failed to parse TOML: {e}") from e


def write_toml(file_path: Path, data: dict[str, Any], header: str | None = None) -> None:
    """
    Write data to a TOML file atomically.

    Args:
        file_path: Path to the TOML file
        data: Data to write
        header: Optional comment placed at the top of the file

    Raises:
        TOMLError: If file cannot be written
    """
    doc = tomlkit.document()
    if header:
        for line in header.splitlines():
            doc.add(tomlkit.comment(line))
        doc.add(tomlkit.nl())

    for key, value in data.items():
        doc.add(key, value)

    try:
        atomic_write_text(file_path, tomlkit.dumps(doc))
    except UtilsError as e:
        raise TOMLError(f"Failed to write TOML file {file_path}: {e}") from e
