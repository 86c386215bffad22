"""Command implementations for the cesto CLI."""
