"""Contact database model."""

from crmcore.db.contacts.model import Contact

__all__ = ["Contact"]
