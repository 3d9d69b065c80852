"""
Tests for SessionLifecycleManager with the in-memory auth provider and an
in-memory SQLite backend.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from crmcore.auth.bootstrap import ProfileBootstrapper
from crmcore.auth.constants import AuthChangeEvent, SessionState
from crmcore.auth.dataclasses import SignUpData
from crmcore.auth.schemas import PersistedAuthState
from crmcore.auth.service import InMemoryAuthProvider
from crmcore.auth.session_manager import SessionLifecycleManager
from crmcore.auth.storage import InMemorySessionStorage
from crmcore.crm.tenant import TenantResolver
from crmcore.exceptions import (
    SessionStateError,
    UnauthenticatedError,
    UpstreamError,
    ValidationFailedError,
)
from crmcore.state.store import ClientStateStore


class SlowRefreshProvider(InMemoryAuthProvider):
    """Refreshes yield to the event loop before answering."""

    async def refresh_session(self, refresh_token):
        await asyncio.sleep(0)
        return await super().refresh_session(refresh_token)


def build_manager(provider, data_service, storage=None, store=None):
    return SessionLifecycleManager(
        provider,
        ProfileBootstrapper(data_service),
        storage=storage,
        store=store,
        refresh_margin_seconds=60,
    )


@pytest.fixture
def storage():
    return InMemorySessionStorage()


@pytest.fixture
def store():
    return ClientStateStore()


@pytest_asyncio.fixture
async def manager(auth_provider, data_service, storage, store):
    manager = build_manager(auth_provider, data_service, storage, store)
    await manager.initialize()
    yield manager
    await manager.close()


async def register(manager, email="jane@acme.io", password="secret-password", **metadata):
    return await manager.register(SignUpData(email=email, password=password, **metadata))


async def shorten_session(provider, manager, ttl_seconds=5):
    """Swap in credentials that are inside the refresh margin."""
    short = provider.issue_session(manager.session.user.id, ttl_seconds=ttl_seconds)
    await provider.emit(AuthChangeEvent.TOKEN_REFRESHED, short)
    return short


# Initialization
@pytest.mark.asyncio
async def test_initialize_without_session_is_anonymous(manager, store):
    assert manager.is_initialized
    assert manager.state is SessionState.ANONYMOUS
    assert manager.session is None
    assert store.snapshot.session_state is SessionState.ANONYMOUS


@pytest.mark.asyncio
async def test_initialize_is_idempotent(manager, auth_provider):
    assert await manager.initialize() is SessionState.ANONYMOUS
    assert len(auth_provider._listeners) == 1


@pytest.mark.asyncio
async def test_operations_before_initialize_are_rejected(auth_provider, data_service):
    manager = build_manager(auth_provider, data_service)

    assert manager.state is SessionState.UNINITIALIZED
    with pytest.raises(SessionStateError):
        await manager.login("jane@acme.io", "secret-password")


@pytest.mark.asyncio
async def test_initialize_restores_persisted_session(auth_provider, data_service, storage, manager):
    """Test that a second run picks up the persisted session and profile."""
    actor = await register(manager)

    restored = build_manager(auth_provider, data_service, storage)
    state = await restored.initialize()

    assert state is SessionState.AUTHENTICATED
    assert restored.session.user.id == actor.id
    assert restored.profile.organization_id == actor.organization_id
    await restored.close()


@pytest.mark.asyncio
async def test_initialize_refreshes_expiring_persisted_session(
    auth_provider, data_service, storage, manager
):
    await register(manager)
    short = await shorten_session(auth_provider, manager)
    refreshes = auth_provider.refresh_calls

    restored = build_manager(auth_provider, data_service, storage)
    state = await restored.initialize()

    assert state is SessionState.AUTHENTICATED
    assert auth_provider.refresh_calls == refreshes + 1
    assert restored.session.access_token != short.access_token
    await restored.close()


@pytest.mark.asyncio
async def test_initialize_with_revoked_session_is_anonymous(
    auth_provider, data_service, storage, manager
):
    """Test that an invalid persisted session leaves the manager anonymous."""
    await register(manager)
    auth_provider.expire_session(manager.session.access_token)

    restored = build_manager(auth_provider, data_service, storage)
    state = await restored.initialize()

    assert state is SessionState.ANONYMOUS
    assert restored.is_initialized
    assert await storage.load() is None
    await restored.close()


@pytest.mark.asyncio
async def test_initialize_survives_storage_failure(auth_provider, data_service):
    broken = AsyncMock(spec=InMemorySessionStorage)
    broken.load.side_effect = RuntimeError("disk on fire")
    manager = build_manager(auth_provider, data_service, broken)

    assert await manager.initialize() is SessionState.ANONYMOUS
    assert manager.is_initialized


# Registration and sign-in
@pytest.mark.asyncio
async def test_register_bootstraps_profile_and_organization(manager, data_service):
    """Test that a fresh registration yields a profile with a resolvable organization."""
    await register(manager, email="a@x.com")

    actor = await manager.get_current_actor()

    assert actor.profile.email == "a@x.com"
    assert actor.profile.role.value == "owner"
    scope = await TenantResolver(data_service).resolve(actor.id)
    assert scope.organization_id == actor.organization_id
    organization = await data_service.select_one(
        "organizations", {"id": actor.organization_id}
    )
    assert organization["name"] == "X"


@pytest.mark.asyncio
async def test_register_pending_confirmation(data_service):
    provider = InMemoryAuthProvider(require_confirmation=True)
    manager = build_manager(provider, data_service)
    await manager.initialize()

    assert await register(manager) is None
    assert manager.state is SessionState.ANONYMOUS


@pytest.mark.asyncio
async def test_register_duplicate_email_fails(manager):
    await register(manager)
    await manager.logout()

    with pytest.raises(UnauthenticatedError, match="already registered"):
        await register(manager)


@pytest.mark.asyncio
async def test_login_after_logout(manager, store):
    registered = await register(manager)
    await manager.logout()

    actor = await manager.login("jane@acme.io", "secret-password")

    assert manager.state is SessionState.AUTHENTICATED
    assert actor.id == registered.id
    assert actor.profile.organization_id == registered.organization_id
    assert store.snapshot.actor.id == registered.id


@pytest.mark.asyncio
async def test_login_failure_stays_anonymous(manager):
    with pytest.raises(UnauthenticatedError, match="Invalid login credentials"):
        await manager.login("nobody@acme.io", "wrong")

    assert manager.state is SessionState.ANONYMOUS
    assert manager.session is None


@pytest.mark.asyncio
async def test_login_failure_keeps_existing_session(manager):
    actor = await register(manager)

    with pytest.raises(UnauthenticatedError):
        await manager.login("jane@acme.io", "wrong")

    assert manager.state is SessionState.AUTHENTICATED
    assert manager.current_actor.id == actor.id


@pytest.mark.asyncio
async def test_login_as_other_user_replaces_actor(manager, auth_provider):
    first = await register(manager)
    await auth_provider.sign_up(SignUpData(email="bob@globex.com", password="pw"))

    second = await manager.login("bob@globex.com", "pw")

    assert second.id != first.id
    assert second.organization_id != first.organization_id
    assert manager.profile.email == "bob@globex.com"


@pytest.mark.asyncio
async def test_concurrent_login_is_rejected(manager):
    await register(manager)
    await manager.logout()

    results = await asyncio.gather(
        manager.login("jane@acme.io", "secret-password"),
        manager.login("jane@acme.io", "secret-password"),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], SessionStateError)
    assert manager.state is SessionState.AUTHENTICATED


@pytest.mark.asyncio
async def test_bootstrap_failure_leaves_actor_without_profile(auth_provider, data_service):
    """Test that a failed bootstrap keeps the session and is retried later."""
    manager = build_manager(auth_provider, data_service)
    manager.bootstrapper = AsyncMock(spec=ProfileBootstrapper)
    manager.bootstrapper.ensure_profile.side_effect = UpstreamError("down")
    await manager.initialize()

    actor = await register(manager)

    assert manager.state is SessionState.AUTHENTICATED
    assert actor.profile is None
    assert actor.organization_id is None

    manager.bootstrapper.ensure_profile.side_effect = None
    manager.bootstrapper.ensure_profile.return_value = None
    await manager.get_current_actor()
    assert manager.bootstrapper.ensure_profile.await_count == 2


# Sign-out
@pytest.mark.asyncio
async def test_logout_clears_everything(manager, storage, store):
    await register(manager)

    await manager.logout()

    assert manager.state is SessionState.ANONYMOUS
    assert manager.session is None
    assert manager.profile is None
    assert await storage.load() is None
    assert store.snapshot.actor is None


@pytest.mark.asyncio
async def test_logout_clears_locally_when_remote_fails(manager, auth_provider):
    """Test that a failing remote sign-out does not block local teardown."""
    await register(manager)
    auth_provider.fail_sign_out = True

    await manager.logout()

    assert manager.state is SessionState.ANONYMOUS
    assert manager.session is None
    with pytest.raises(UnauthenticatedError):
        await manager.require_actor_id()


# Credentials
@pytest.mark.asyncio
async def test_get_valid_session_refreshes_once_for_concurrent_callers(data_service):
    """Test that concurrent callers share a single refresh."""
    provider = SlowRefreshProvider()
    manager = build_manager(provider, data_service)
    await manager.initialize()
    await register(manager)
    await shorten_session(provider, manager)

    sessions = await asyncio.gather(*(manager.get_valid_session() for _ in range(3)))

    assert provider.refresh_calls == 1
    assert len({s.access_token for s in sessions}) == 1
    assert not manager.session.expires_within(60)
    await manager.close()


@pytest.mark.asyncio
async def test_refresh_failure_tears_down(manager, auth_provider):
    await register(manager)
    auth_provider.revoke_refresh_tokens(manager.session.user.id)

    with pytest.raises(UnauthenticatedError):
        await manager.refresh()

    assert manager.state is SessionState.ANONYMOUS
    assert manager.session is None


@pytest.mark.asyncio
async def test_access_token_when_anonymous(manager):
    assert await manager.access_token() is None
    with pytest.raises(UnauthenticatedError):
        await manager.get_valid_session()


# Provider notifications
@pytest.mark.asyncio
async def test_token_refresh_event_does_not_reload_profile(manager, auth_provider):
    await register(manager)
    profile = manager.profile
    manager.bootstrapper = AsyncMock(spec=ProfileBootstrapper)

    fresh = auth_provider.issue_session(manager.session.user.id)
    await auth_provider.emit(AuthChangeEvent.TOKEN_REFRESHED, fresh)

    assert manager.session.access_token == fresh.access_token
    assert manager.profile is profile
    manager.bootstrapper.ensure_profile.assert_not_called()


@pytest.mark.asyncio
async def test_sign_in_from_another_tab_is_adopted(manager, auth_provider, store):
    """Test that a sign-in pushed by the provider loads the profile."""
    await auth_provider.sign_up(SignUpData(email="tab@acme.io", password="pw"))

    assert manager.state is SessionState.AUTHENTICATED
    assert manager.profile.email == "tab@acme.io"
    assert store.snapshot.actor.organization_id == manager.profile.organization_id


@pytest.mark.asyncio
async def test_sign_out_from_another_tab_tears_down(manager, auth_provider):
    await register(manager)

    await auth_provider.emit(AuthChangeEvent.SIGNED_OUT)

    assert manager.state is SessionState.ANONYMOUS
    assert manager.session is None


@pytest.mark.asyncio
async def test_events_after_close_are_ignored(manager, auth_provider):
    await register(manager)
    await manager.close()

    await manager.handle_auth_event(AuthChangeEvent.SIGNED_OUT, None)

    assert manager.state is SessionState.TERMINATED
    assert manager.session is not None
    with pytest.raises(SessionStateError):
        await manager.login("jane@acme.io", "secret-password")


# Profile and account management
@pytest.mark.asyncio
async def test_update_profile(manager, storage):
    await register(manager)

    profile = await manager.update_profile({"job_title": "CEO", "phone": "555-0100"})

    assert profile.job_title == "CEO"
    assert manager.profile.phone == "555-0100"
    persisted = await storage.load()
    assert persisted.profile.job_title == "CEO"


@pytest.mark.asyncio
async def test_update_profile_rejects_unknown_fields(manager):
    await register(manager)

    with pytest.raises(ValidationFailedError):
        await manager.update_profile({"organization_id": "someone-else"})


@pytest.mark.asyncio
async def test_update_profile_requires_session(manager):
    with pytest.raises(UnauthenticatedError):
        await manager.update_profile({"job_title": "CEO"})


@pytest.mark.asyncio
async def test_complete_onboarding(manager):
    await register(manager)

    profile = await manager.complete_onboarding()

    assert profile.onboarding_completed is True


@pytest.mark.asyncio
async def test_request_password_reset(manager, auth_provider):
    assert await manager.request_password_reset("Jane@Acme.io") is True
    assert auth_provider.password_resets == ["jane@acme.io"]


@pytest.mark.asyncio
async def test_update_password(manager, auth_provider):
    await register(manager)

    await manager.update_password("new-password")
    await manager.logout()

    actor = await manager.login("jane@acme.io", "new-password")
    assert actor.email == "jane@acme.io"


@pytest.mark.asyncio
async def test_persisted_state_contains_session_and_profile(manager, storage):
    await register(manager)

    persisted = await storage.load()

    assert isinstance(persisted, PersistedAuthState)
    assert persisted.session.user.id == manager.session.user.id
    assert persisted.profile.id == manager.session.user.id
