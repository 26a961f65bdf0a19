"""HTTP service mode for guidesync (requires the ``service`` extra)."""

from .app import create_app, run_service

__all__ = ["create_app", "run_service"]
