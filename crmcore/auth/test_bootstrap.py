"""
Tests for ProfileBootstrapper.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from crmcore.auth.bootstrap import ProfileBootstrapper
from crmcore.auth.constants import Role
from crmcore.auth.schemas import User
from crmcore.db.data_service import DataService
from crmcore.exceptions import ConflictError, UpstreamError


def make_user(email="jane@acme.io", **metadata) -> User:
    return User(id="user-1", email=email, user_metadata=metadata)


def profile_row(**overrides):
    row = {
        "id": "user-1",
        "email": "jane@acme.io",
        "first_name": "Jane",
        "last_name": None,
        "role": "owner",
        "organization_id": "org-1",
        "onboarding_completed": False,
    }
    row.update(overrides)
    return row


@pytest.fixture
def data_service():
    return AsyncMock(spec=DataService)


@pytest.fixture
def bootstrapper(data_service):
    return ProfileBootstrapper(data_service)


@pytest.mark.asyncio
async def test_ensure_profile_returns_existing(bootstrapper, data_service):
    """Test that bootstrap is a no-op when the profile exists."""
    data_service.select_one.return_value = profile_row()

    profile = await bootstrapper.ensure_profile(make_user())

    assert profile.organization_id == "org-1"
    data_service.insert.assert_not_called()


@pytest.mark.asyncio
async def test_ensure_profile_creates_organization_and_owner(bootstrapper, data_service):
    """Test first-login bootstrap from identity metadata."""
    data_service.select_one.return_value = None

    async def insert(collection, values):
        if collection == "organizations":
            return {"id": "org-new", **values}
        return values

    data_service.insert.side_effect = insert

    profile = await bootstrapper.ensure_profile(
        make_user(first_name="Jane", last_name="Doe", avatar_url="https://img/jane.png")
    )

    org_call, profile_call = data_service.insert.call_args_list
    assert org_call.args == ("organizations", {"name": "Acme"})
    assert profile_call.args[0] == "profiles"
    assert profile.id == "user-1"
    assert profile.role is Role.OWNER
    assert profile.organization_id == "org-new"
    assert profile.full_name == "Jane Doe"
    assert profile.avatar_url == "https://img/jane.png"


@pytest.mark.asyncio
async def test_ensure_profile_race_uses_existing_row(bootstrapper, data_service):
    """Test that a lost insert race re-reads the winner and discards its organization."""
    data_service.select_one.side_effect = [None, profile_row(organization_id="org-winner")]

    async def insert(collection, values):
        if collection == "organizations":
            return {"id": "org-loser", **values}
        raise ConflictError("duplicate key", status_code=409)

    data_service.insert.side_effect = insert

    profile = await bootstrapper.ensure_profile(make_user())

    assert profile.organization_id == "org-winner"
    data_service.delete.assert_awaited_once_with("organizations", {"id": "org-loser"})


@pytest.mark.asyncio
async def test_ensure_profile_conflict_without_row_reraises(bootstrapper, data_service):
    data_service.select_one.return_value = None

    async def insert(collection, values):
        if collection == "organizations":
            return {"id": "org-1", **values}
        raise ConflictError("constraint violated")

    data_service.insert.side_effect = insert

    with pytest.raises(ConflictError):
        await bootstrapper.ensure_profile(make_user())

    data_service.delete.assert_awaited_once_with("organizations", {"id": "org-1"})


@pytest.mark.asyncio
async def test_failed_profile_insert_leaves_no_organizations():
    """Test that retried bootstraps during an outage do not accumulate organizations."""
    organizations: dict[str, dict] = {}
    data_service = AsyncMock(spec=DataService)
    data_service.select_one.return_value = None

    async def insert(collection, values):
        if collection == "organizations":
            org_id = f"org-{len(organizations) + 1}"
            organizations[org_id] = {"id": org_id, **values}
            return organizations[org_id]
        raise UpstreamError("service unavailable", status_code=503)

    async def delete(collection, filters):
        return 1 if organizations.pop(filters["id"], None) else 0

    data_service.insert.side_effect = insert
    data_service.delete.side_effect = delete
    bootstrapper = ProfileBootstrapper(data_service)

    for _ in range(3):
        with pytest.raises(UpstreamError):
            await bootstrapper.ensure_profile(make_user())

    assert organizations == {}
    assert data_service.delete.await_count == 3


@pytest.mark.asyncio
async def test_failed_reread_after_conflict_discards_organization(bootstrapper, data_service):
    data_service.select_one.side_effect = [None, UpstreamError("down")]

    async def insert(collection, values):
        if collection == "organizations":
            return {"id": "org-loser", **values}
        raise ConflictError("duplicate key")

    data_service.insert.side_effect = insert

    with pytest.raises(UpstreamError):
        await bootstrapper.ensure_profile(make_user())

    data_service.delete.assert_awaited_once_with("organizations", {"id": "org-loser"})


@pytest.mark.asyncio
async def test_orphan_cleanup_failure_is_tolerated(bootstrapper, data_service):
    data_service.select_one.side_effect = [None, profile_row()]
    data_service.delete.side_effect = UpstreamError("down")

    async def insert(collection, values):
        if collection == "organizations":
            return {"id": "org-loser", **values}
        raise ConflictError("duplicate key")

    data_service.insert.side_effect = insert

    profile = await bootstrapper.ensure_profile(make_user())

    assert profile.id == "user-1"


@pytest.mark.asyncio
async def test_concurrent_bootstraps_yield_one_profile():
    """Test two racing bootstraps against a store enforcing the profile key."""
    profiles: dict[str, dict] = {}
    organizations: list[str] = []
    created = 0
    data_service = AsyncMock(spec=DataService)

    async def select_one(collection, filters):
        row = profiles.get(filters["id"])
        # Let the other bootstrap run before returning the stale read
        await asyncio.sleep(0)
        return row

    async def insert(collection, values):
        nonlocal created
        if collection == "organizations":
            created += 1
            organizations.append(f"org-{created}")
            return {"id": f"org-{created}", **values}
        if values["id"] in profiles:
            raise ConflictError("duplicate key")
        profiles[values["id"]] = values
        return values

    async def delete(collection, filters):
        organizations.remove(filters["id"])
        return 1

    data_service.select_one.side_effect = select_one
    data_service.insert.side_effect = insert
    data_service.delete.side_effect = delete
    user = make_user()

    first, second = await asyncio.gather(
        ProfileBootstrapper(data_service).ensure_profile(user),
        ProfileBootstrapper(data_service).ensure_profile(user),
    )

    assert first == second
    assert list(profiles) == ["user-1"]
    assert organizations == [first.organization_id]


@pytest.mark.parametrize(
    "email, metadata, expected",
    [
        ("jane@acme.io", {"organization_name": "  Acme Roofing "}, "Acme Roofing"),
        ("jane@acme.io", {"company": "Acme Inc"}, "Acme Inc"),
        ("a@x.com", {}, "X"),
        ("owner@robinhoodroofingutah.com", {}, "Robinhoodroofingutah"),
        ("jane@gmail.com", {"first_name": "Jane"}, "Jane's Organization"),
        ("jane@gmail.com", {}, "jane's Organization"),
    ],
)
def test_organization_name(bootstrapper, email, metadata, expected):
    """Test how a new organization is named."""
    assert bootstrapper._organization_name(make_user(email, **metadata)) == expected


@pytest.mark.asyncio
async def test_update_profile_stamps_updated_at(bootstrapper, data_service):
    data_service.update.return_value = [profile_row(job_title="CEO")]

    profile = await bootstrapper.update_profile("user-1", {"job_title": "CEO"})

    collection, filters, values = data_service.update.call_args.args
    assert (collection, filters) == ("profiles", {"id": "user-1"})
    assert values["job_title"] == "CEO"
    assert "updated_at" in values
    assert profile.job_title == "CEO"


@pytest.mark.asyncio
async def test_update_profile_missing_returns_none(bootstrapper, data_service):
    data_service.update.return_value = []

    assert await bootstrapper.update_profile("user-1", {"job_title": "CEO"}) is None
