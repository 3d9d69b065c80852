"""Profile database model."""

from crmcore.db.profiles.model import Profile

__all__ = ["Profile"]
