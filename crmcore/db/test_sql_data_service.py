"""
Tests for SQLAlchemyDataService against an in-memory SQLite database.
"""

import pytest
import pytest_asyncio

from crmcore.exceptions import ConflictError, UpstreamError


@pytest_asyncio.fixture
async def organization(data_service):
    return await data_service.insert("organizations", {"name": "Acme"})


@pytest.mark.asyncio
async def test_insert_returns_server_defaults(data_service, organization):
    """Test that an inserted row is read back with its defaults."""
    row = await data_service.insert(
        "deals", {"title": "Big deal", "organization_id": organization["id"]}
    )

    assert row["id"]
    assert row["value"] == 0
    assert row["currency"] == "USD"
    assert row["stage"] == "prospecting"
    assert row["probability"] == 10
    assert row["tags"] == []
    assert row["custom_fields"] == {}
    assert row["created_at"] is not None


@pytest.mark.asyncio
async def test_select_filters_and_orders(data_service, organization):
    """Test equality filters and descending order."""
    other = await data_service.insert("organizations", {"name": "Globex"})
    for name in ("Ann", "Bob"):
        await data_service.insert(
            "contacts",
            {"first_name": name, "last_name": "Lee", "organization_id": organization["id"]},
        )
    await data_service.insert(
        "contacts",
        {"first_name": "Eve", "last_name": "Other", "organization_id": other["id"]},
    )

    rows = await data_service.select(
        "contacts",
        {"organization_id": organization["id"]},
        order_by="created_at",
        descending=True,
    )

    assert {row["first_name"] for row in rows} == {"Ann", "Bob"}
    assert rows[0]["created_at"] >= rows[1]["created_at"]


@pytest.mark.asyncio
async def test_select_none_filter_matches_null(data_service, organization):
    """Test that a None filter value matches NULL columns."""
    await data_service.insert(
        "contacts",
        {"first_name": "Ann", "last_name": "Lee", "organization_id": organization["id"]},
    )
    await data_service.insert(
        "contacts",
        {
            "first_name": "Bob",
            "last_name": "Lee",
            "email": "bob@acme.com",
            "organization_id": organization["id"],
        },
    )

    rows = await data_service.select("contacts", {"email": None})

    assert [row["first_name"] for row in rows] == ["Ann"]


@pytest.mark.asyncio
async def test_select_one_missing_returns_none(data_service):
    """Test select_one when nothing matches."""
    assert await data_service.select_one("contacts", {"id": "missing"}) is None


@pytest.mark.asyncio
async def test_update_returns_updated_rows(data_service, organization):
    """Test that update returns the rows as stored after the write."""
    row = await data_service.insert(
        "deals", {"title": "Deal", "organization_id": organization["id"]}
    )

    updated = await data_service.update("deals", {"id": row["id"]}, {"stage": "proposal"})

    assert len(updated) == 1
    assert updated[0]["stage"] == "proposal"
    assert updated[0]["title"] == "Deal"


@pytest.mark.asyncio
async def test_update_no_match_returns_empty(data_service):
    """Test update of a missing row."""
    assert await data_service.update("deals", {"id": "missing"}, {"stage": "proposal"}) == []


@pytest.mark.asyncio
async def test_delete_returns_count(data_service, organization):
    """Test that delete reports how many rows were removed."""
    row = await data_service.insert(
        "tasks", {"title": "Call", "organization_id": organization["id"]}
    )

    assert await data_service.delete("tasks", {"id": row["id"]}) == 1
    assert await data_service.delete("tasks", {"id": row["id"]}) == 0


@pytest.mark.asyncio
async def test_duplicate_primary_key_raises_conflict(data_service, organization):
    """Test that an integrity violation maps to ConflictError."""
    values = {"id": "user-1", "email": "a@acme.com", "organization_id": organization["id"]}
    await data_service.insert("profiles", values)

    with pytest.raises(ConflictError):
        await data_service.insert("profiles", values)


@pytest.mark.asyncio
async def test_failed_call_does_not_roll_back_earlier_call(data_service, organization):
    """Test that each call is its own transaction."""
    values = {"id": "user-1", "email": "a@acme.com", "organization_id": organization["id"]}
    await data_service.insert("profiles", values)
    with pytest.raises(ConflictError):
        await data_service.insert("profiles", values)

    assert await data_service.select_one("profiles", {"id": "user-1"}) is not None


@pytest.mark.asyncio
async def test_unknown_collection_raises_upstream(data_service):
    """Test that an unknown collection is reported as an upstream error."""
    with pytest.raises(UpstreamError):
        await data_service.select("invoices")


@pytest.mark.asyncio
async def test_unknown_column_raises_upstream(data_service):
    """Test that an unknown column is reported as an upstream error."""
    with pytest.raises(UpstreamError):
        await data_service.select("contacts", {"favourite_color": "blue"})


@pytest.mark.asyncio
async def test_unfiltered_delete_is_refused(data_service):
    """Test that bulk writes without filters are refused."""
    with pytest.raises(ValueError):
        await data_service.delete("contacts", {})
