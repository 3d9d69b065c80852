"""Tests for the schema translators."""

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from crmcore.crm.constants import ActivityKind, DealStage, EntityKind, TaskType
from crmcore.crm.translator import (
    ACTIVITY_TRANSLATOR,
    CONTACT_TRANSLATOR,
    DEAL_TRANSLATOR,
    TASK_TRANSLATOR,
    ActivityTranslator,
)
from crmcore.exceptions import UpstreamError, ValidationFailedError

NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)


def task_row(**overrides):
    row = {
        "id": "t1",
        "organization_id": "org-1",
        "created_by": "user-1",
        "assigned_to": None,
        "tags": None,
        "notes": None,
        "custom_fields": None,
        "created_at": "2025-01-02T03:04:05",
        "updated_at": "2025-01-02T03:04:05+00:00",
        "title": "Call back",
        "description": None,
        "type": "call",
        "priority": "high",
        "status": "pending",
        "due_date": None,
        "reminder_at": None,
        "completed_at": None,
        "contact_id": None,
        "deal_id": None,
    }
    row.update(overrides)
    return row


def test_task_type_is_stored_in_type_column():
    """Test the task_type <-> type rename in both directions."""
    task = TASK_TRANSLATOR.to_internal(task_row())

    assert task.task_type is TaskType.CALL
    assert TASK_TRANSLATOR.to_wire({"task_type": TaskType.MEETING}) == {"type": "meeting"}
    assert TASK_TRANSLATOR.column("task_type") == "type"


def test_null_collections_decode_as_empty():
    """Test that NULL tags and custom fields become empty containers."""
    task = TASK_TRANSLATOR.to_internal(task_row())

    assert task.tags == []
    assert task.custom_fields == {}


def test_naive_timestamps_are_read_as_utc():
    """Test that timestamps without an offset are interpreted as UTC."""
    task = TASK_TRANSLATOR.to_internal(task_row())

    assert task.created_at == NOW
    assert task.created_at.tzinfo is not None
    assert task.updated_at == NOW


def test_aware_timestamps_are_written_as_utc():
    """Test that offset timestamps are normalized to UTC on write."""
    local = NOW.astimezone(timezone(timedelta(hours=-5)))

    wire = TASK_TRANSLATOR.to_wire({"due_date": local})

    assert wire["due_date"] == NOW
    assert wire["due_date"].utcoffset() == timedelta(0)


def test_to_wire_is_sparse():
    """Test that only present fields are emitted."""
    assert DEAL_TRANSLATOR.to_wire({"stage": DealStage.PROPOSAL}) == {"stage": "proposal"}


def test_blank_references_are_written_as_null():
    """Test that empty reference strings are stored as NULL."""
    wire = DEAL_TRANSLATOR.to_wire({"contact_id": "  ", "assigned_to": ""})

    assert wire == {"contact_id": None, "assigned_to": None}


def test_calendar_dates_decode_from_strings():
    row = {
        "id": "d1",
        "organization_id": "org-1",
        "title": "Renewal",
        "expected_close_date": "2025-06-30",
        "created_at": NOW,
        "updated_at": NOW,
    }

    deal = DEAL_TRANSLATOR.to_internal(row)

    assert deal.expected_close_date == date(2025, 6, 30)
    assert deal.stage is DealStage.PROSPECTING


def test_unknown_field_is_rejected():
    """Test that writing a field the model does not have fails validation."""
    with pytest.raises(ValidationFailedError) as exc_info:
        CONTACT_TRANSLATOR.to_wire({"first_name": "Ann", "shoe_size": 42})

    assert exc_info.value.errors[0]["loc"] == ["shoe_size"]


def test_unknown_column_lookup_is_rejected():
    with pytest.raises(ValidationFailedError):
        CONTACT_TRANSLATOR.column("shoe_size")


def test_malformed_row_raises_upstream():
    """Test that a row missing required fields is reported as an upstream error."""
    with pytest.raises(UpstreamError):
        CONTACT_TRANSLATOR.to_internal({"id": "c1", "first_name": "Ann"})


def test_activity_type_is_packed_and_split():
    """Test the entity_kind/kind packing of the activity type column."""
    wire = ACTIVITY_TRANSLATOR.to_wire(
        {
            "entity_kind": EntityKind.DEAL,
            "kind": ActivityKind.STAGE_CHANGED,
            "actor_id": "user-1",
            "title": "Deal Stage Changed",
        }
    )

    assert wire["type"] == "deal_stage_changed"
    assert wire["user_id"] == "user-1"
    assert "entity_kind" not in wire

    activity = ACTIVITY_TRANSLATOR.to_internal(
        {
            **wire,
            "id": "a1",
            "organization_id": "org-1",
            "metadata": None,
            "created_at": NOW,
        }
    )

    assert activity.entity_kind is EntityKind.DEAL
    assert activity.kind is ActivityKind.STAGE_CHANGED
    assert activity.actor_id == "user-1"
    assert activity.metadata == {}


def test_activity_kind_written_alone_is_rejected():
    with pytest.raises(ValidationFailedError):
        ACTIVITY_TRANSLATOR.to_wire({"kind": ActivityKind.CREATED})


def test_activity_packed_fields_map_to_type_column():
    assert ACTIVITY_TRANSLATOR.column("kind") == "type"
    assert ActivityTranslator.pack_type("task", "completed") == "task_completed"
