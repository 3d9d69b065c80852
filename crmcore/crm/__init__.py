"""Tenant-scoped entity access with audit recording."""
