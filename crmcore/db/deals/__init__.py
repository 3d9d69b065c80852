"""Deal database model."""

from crmcore.db.deals.model import Deal

__all__ = ["Deal"]
