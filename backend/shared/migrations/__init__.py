"""Schema migrations."""

from .runner import MigrationRunner

__all__ = ["MigrationRunner"]
