"""
cesto Core - helpers shared across cesto.

This module contains:
- Utils: atomic file writes and tree removal
"""

__all__ = []
