"""Task database model."""

from crmcore.db.tasks.model import Task

__all__ = ["Task"]
