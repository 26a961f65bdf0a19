"""Fetch coding guidelines and merge them into per-project agent instruction files."""

__version__ = "0.1.0"
