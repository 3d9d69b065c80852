"""Organization database model."""

from crmcore.db.organizations.model import Organization

__all__ = ["Organization"]
