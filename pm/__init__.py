"""
pm - cesto command-line interface.

Pacman-style front end for the cesto plugin manager: sync plugins (-S),
preview a sync (-Sp) and query the configured tree (-Q).
"""

from cesto import __version__

__all__ = ["__version__"]
