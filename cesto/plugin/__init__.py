"""
cesto Plugin System - reconciliation, installation and loader generation.

This module handles:
- Plugin tree model and plugin file parsing
- Installed state persistence
- Reconciliation of configuration against installed state
- Concurrent install/update/removal
- Loader script generation and report rendering
"""

__all__ = []
