"""Activity database model."""

from crmcore.db.activities.model import Activity

__all__ = ["Activity"]
