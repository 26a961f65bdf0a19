"""Git integration for committing synced guideline files."""

from .publisher import Publisher, find_repo_root

__all__ = ["Publisher", "find_repo_root"]
