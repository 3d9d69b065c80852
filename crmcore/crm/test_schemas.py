"""Tests for the stored entity models."""

from datetime import UTC, datetime

import pytest

from crmcore.crm.schemas import Contact, Deal, EntityRecord, Task

NOW = datetime(2025, 1, 1, tzinfo=UTC)
CORE = {"id": "e-1", "organization_id": "org-1", "created_at": NOW, "updated_at": NOW}


def test_entity_record_requires_display_name():
    """Test that the shared core cannot be stored without a kind-specific name."""
    with pytest.raises(TypeError):
        EntityRecord(**CORE)


@pytest.mark.parametrize(
    "model, fields, expected",
    [
        (Contact, {"first_name": "Ann", "last_name": "Lee"}, "Ann Lee"),
        (Deal, {"title": "Roof replacement"}, "Roof replacement"),
        (Task, {"title": "Call Ann"}, "Call Ann"),
    ],
)
def test_display_name(model, fields, expected):
    assert model(**CORE, **fields).display_name == expected
