"""Multi-tenant CRM data layer: entity access, auditing and session lifecycle."""

__version__ = "0.1.0"
