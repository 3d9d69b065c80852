"""
Session lifecycle management.

``SessionLifecycleManager`` owns the actor's authentication state machine:

    uninitialized -> initializing -> {authenticated, anonymous} -> terminated

It restores a persisted session on startup, refreshes expiring credentials,
merges change notifications pushed by the auth provider and bootstraps the
actor's profile whenever a session becomes authenticated.
"""

import asyncio
from typing import Any

from pydantic import ValidationError

from crmcore.auth.bootstrap import ProfileBootstrapper
from crmcore.auth.constants import AuthChangeEvent, SessionState
from crmcore.auth.dataclasses import SignUpData
from crmcore.auth.schemas import (
    Actor,
    PersistedAuthState,
    Profile,
    ProfileUpdate,
    Session,
)
from crmcore.auth.service import AuthProvider
from crmcore.auth.storage import InMemorySessionStorage, SessionStorage
from crmcore.exceptions import (
    SessionStateError,
    UnauthenticatedError,
    UpstreamError,
    ValidationFailedError,
)
from crmcore.state.store import ClientStateStore
from crmcore.utils.logger import logger

LOGIN_STATES = frozenset({SessionState.ANONYMOUS, SessionState.AUTHENTICATED})


class SessionLifecycleManager:
    """Owns the session, the cached profile and the session state machine."""

    def __init__(
        self,
        provider: AuthProvider,
        bootstrapper: ProfileBootstrapper,
        storage: SessionStorage | None = None,
        store: ClientStateStore | None = None,
        refresh_margin_seconds: float = 60,
    ):
        """
        Initialize the manager.

        Args:
            provider: Auth provider issuing and validating sessions
            bootstrapper: Reads and creates actor profiles
            storage: Where the session is persisted between runs
            store: Client state store mirroring the current actor
            refresh_margin_seconds: Refresh tokens expiring within this margin
        """
        self.provider = provider
        self.bootstrapper = bootstrapper
        self.storage = storage or InMemorySessionStorage()
        self.store = store
        self.refresh_margin_seconds = refresh_margin_seconds

        self._state = SessionState.UNINITIALIZED
        self._session: Session | None = None
        self._profile: Profile | None = None
        self._is_initialized = False
        self._login_in_flight = False
        self._refresh_lock = asyncio.Lock()
        self._unsubscribe = None

    # Accessors
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def profile(self) -> Profile | None:
        return self._profile

    @property
    def current_actor(self) -> Actor | None:
        """Snapshot of the signed-in actor, or None when anonymous."""
        if self._session is None:
            return None
        return Actor(user=self._session.user, profile=self._profile)

    # State bookkeeping
    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug(
                "Session state transition",
                from_state=self._state.value,
                to_state=state.value,
            )
            self._state = state
        self._publish()

    def _publish(self) -> None:
        if self.store is not None:
            self.store.set_actor(self.current_actor, self._state)

    async def _persist(self) -> None:
        try:
            if self._session is None:
                await self.storage.clear()
            else:
                await self.storage.save(
                    PersistedAuthState(session=self._session, profile=self._profile)
                )
        except OSError as e:
            logger.warning("Could not persist session", error=str(e))

    async def _bootstrap_profile(self) -> None:
        """Load or create the profile. Failures leave the actor without one."""
        if self._session is None:
            return
        user = self._session.user
        try:
            self._profile = await self.bootstrapper.ensure_profile(user)
        except Exception:
            logger.exception("Profile bootstrap failed", user_id=user.id)
            self._profile = None

    async def _establish(self, session: Session) -> None:
        """Adopt a new session and reload the profile from scratch."""
        self._session = session
        self._profile = None
        self._set_state(SessionState.AUTHENTICATED)
        await self._bootstrap_profile()
        await self._persist()
        self._publish()
        logger.info(
            "Session established",
            user_id=session.user.id,
            has_profile=self._profile is not None,
        )

    def _merge_credentials(self, session: Session) -> None:
        """Take new tokens without touching identity or profile."""
        if self._session is None:
            return
        self._session = self._session.model_copy(
            update={
                "access_token": session.access_token,
                "refresh_token": session.refresh_token,
                "expires_at": session.expires_at,
                "token_type": session.token_type,
            }
        )

    async def _teardown(self) -> None:
        """Forget the session locally. Never touches the provider."""
        self._session = None
        self._profile = None
        if self._state is not SessionState.TERMINATED:
            self._state = SessionState.ANONYMOUS
        await self._persist()
        if self.store is not None:
            self.store.reset(session_state=self._state)

    def _is_same_user(self, session: Session | None) -> bool:
        return (
            session is not None
            and self._session is not None
            and session.user.id == self._session.user.id
        )

    # Lifecycle
    async def initialize(self) -> SessionState:
        """
        Restore a persisted session and subscribe to provider notifications.

        Always completes: a missing, invalid or unrefreshable session simply
        leaves the manager anonymous. Calling it again is a no-op.

        Returns:
            The state after initialization
        """
        if self._state is not SessionState.UNINITIALIZED:
            return self._state

        self._set_state(SessionState.INITIALIZING)
        session = None
        cached_profile = None
        try:
            persisted = await self.storage.load()
            if persisted is not None and persisted.session is not None:
                session = await self._validate_persisted(persisted.session)
                cached_profile = persisted.profile
        except Exception:
            logger.exception("Session restore failed")
            session = None
        finally:
            self._is_initialized = True

        if session is None:
            await self._teardown()
            self._set_state(SessionState.ANONYMOUS)
        else:
            if cached_profile is not None and cached_profile.id == session.user.id:
                # Show the cached profile until the fresh one is loaded
                self._profile = cached_profile
            self._session = session
            self._set_state(SessionState.AUTHENTICATED)
            await self._bootstrap_profile()
            await self._persist()
            self._publish()

        self._unsubscribe = self.provider.on_auth_state_change(self.handle_auth_event)
        logger.info("Session manager initialized", session_state=self._state.value)
        return self._state

    async def _validate_persisted(self, session: Session) -> Session | None:
        if session.expires_within(self.refresh_margin_seconds):
            result = await self.provider.refresh_session(session.refresh_token)
            if not result.success or result.session is None:
                logger.info("Persisted session could not be refreshed", error=result.error)
                return None
            session = result.session

        user = await self.provider.get_user(session.access_token)
        if user is None:
            logger.info("Persisted session is no longer valid")
            return None
        return session.model_copy(update={"user": user})

    async def close(self) -> None:
        """Stop listening to the provider and enter the terminal state."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._set_state(SessionState.TERMINATED)

    # Sign-in and sign-out
    def _begin_login(self) -> None:
        if self._state not in LOGIN_STATES:
            raise SessionStateError(f"Cannot sign in while {self._state.value}")
        if self._login_in_flight:
            raise SessionStateError("A sign-in is already in progress")
        self._login_in_flight = True

    async def _adopt(self, session: Session) -> None:
        if self._session is not None and not self._is_same_user(session):
            await self._teardown()
        await self._establish(session)

    async def login(self, email: str, password: str) -> Actor:
        """
        Sign in with email and password.

        Returns:
            The signed-in actor

        Raises:
            SessionStateError: If not initialized, terminated or already signing in
            UnauthenticatedError: If the provider rejects the credentials
        """
        self._begin_login()
        try:
            result = await self.provider.sign_in(email, password)
            if not result.success or result.session is None:
                logger.warning("Sign-in failed", error=result.error)
                raise UnauthenticatedError(result.error or "Sign-in failed")
            await self._adopt(result.session)
            return self.current_actor
        finally:
            self._login_in_flight = False

    async def register(self, data: SignUpData) -> Actor | None:
        """
        Register a new user.

        Returns:
            The signed-in actor, or None if the provider requires email
            confirmation before a session is issued

        Raises:
            SessionStateError: If not initialized, terminated or already signing in
            UnauthenticatedError: If the provider rejects the registration
        """
        self._begin_login()
        try:
            result = await self.provider.sign_up(data)
            if not result.success:
                logger.warning("Registration failed", error=result.error)
                raise UnauthenticatedError(result.error or "Registration failed")
            if result.session is None:
                logger.info("Registration pending confirmation", email=data.email)
                return None
            await self._adopt(result.session)
            return self.current_actor
        finally:
            self._login_in_flight = False

    async def logout(self) -> None:
        """
        Sign out. Local state is always cleared, even if the provider fails.
        """
        session = self._session
        try:
            if session is not None:
                signed_out = await self.provider.sign_out(session.access_token)
                if not signed_out:
                    logger.warning("Remote sign-out was rejected", user_id=session.user.id)
        except Exception:
            logger.exception("Remote sign-out failed; clearing local session anyway")
        finally:
            await self._teardown()
        logger.info("Signed out")

    # Credentials
    async def refresh(self) -> Session:
        """
        Refresh the session. Concurrent callers share a single refresh.

        Raises:
            UnauthenticatedError: If there is no session or the refresh fails
        """
        stale = self._session
        if stale is None:
            raise UnauthenticatedError()

        async with self._refresh_lock:
            if self._session is None:
                raise UnauthenticatedError()
            if self._session is not stale:
                # Another caller refreshed (or the session changed) while we waited
                return self._session

            result = await self.provider.refresh_session(stale.refresh_token)
            if not result.success or result.session is None:
                logger.warning("Session refresh failed", error=result.error)
                await self._teardown()
                raise UnauthenticatedError(result.error or "Session expired")

            self._merge_credentials(result.session)
            await self._persist()
            self._publish()
            return self._session

    async def get_valid_session(self) -> Session:
        """
        Return a session whose access token is not about to expire.

        Raises:
            UnauthenticatedError: If there is no session or it cannot be refreshed
        """
        session = self._session
        if session is None:
            raise UnauthenticatedError()
        if session.expires_within(self.refresh_margin_seconds):
            return await self.refresh()
        return session

    async def access_token(self) -> str | None:
        """Current access token, refreshed if needed, or None when anonymous."""
        if self._session is None:
            return None
        return (await self.get_valid_session()).access_token

    async def require_actor_id(self) -> str:
        """
        Id of the signed-in actor.

        Raises:
            UnauthenticatedError: If there is no valid session
        """
        session = await self.get_valid_session()
        return session.user.id

    async def get_current_actor(self) -> Actor | None:
        """
        The signed-in actor, retrying the profile bootstrap if it has not
        succeeded yet.
        """
        if self._state is not SessionState.AUTHENTICATED or self._session is None:
            return None
        if self._profile is None:
            await self._bootstrap_profile()
            if self._profile is not None:
                await self._persist()
                self._publish()
        return self.current_actor

    # Provider notifications
    async def handle_auth_event(
        self, event: AuthChangeEvent, session: Session | None
    ) -> None:
        """
        Merge a session change pushed by the provider.

        - TOKEN_REFRESHED: take the new tokens, no profile reload
        - SIGNED_IN: adopt with a full profile reload when no session was
          known (or a different user signed in); same user merges tokens
        - SIGNED_OUT: local teardown
        - USER_UPDATED: take the new identity
        """
        if self._state in (SessionState.UNINITIALIZED, SessionState.TERMINATED):
            return
        logger.debug("Auth event received", auth_event=event.value)

        if event is AuthChangeEvent.TOKEN_REFRESHED:
            if self._is_same_user(session):
                self._merge_credentials(session)
                await self._persist()
                self._publish()
        elif event is AuthChangeEvent.SIGNED_IN:
            # Our own sign-in finishes adoption itself
            if session is None or self._login_in_flight:
                return
            if self._is_same_user(session):
                self._merge_credentials(session)
                await self._persist()
                self._publish()
            else:
                await self._adopt(session)
        elif event is AuthChangeEvent.SIGNED_OUT:
            if self._session is not None:
                await self._teardown()
        elif event is AuthChangeEvent.USER_UPDATED:
            if self._is_same_user(session):
                self._session = self._session.model_copy(update={"user": session.user})
                await self._persist()
                self._publish()

    # Profile and account management
    async def _require_profile(self) -> Profile:
        actor = await self.get_current_actor()
        if actor is None or actor.profile is None:
            raise UnauthenticatedError("No profile for the current user")
        return actor.profile

    async def update_profile(self, data: ProfileUpdate | dict[str, Any]) -> Profile:
        """
        Update the signed-in actor's profile.

        Raises:
            ValidationFailedError: If the update is invalid
            UnauthenticatedError: If there is no session or profile
            UpstreamError: If the backend write fails
        """
        if not isinstance(data, ProfileUpdate):
            try:
                data = ProfileUpdate.model_validate(data)
            except ValidationError as e:
                raise ValidationFailedError(
                    "Invalid profile data", errors=e.errors(include_url=False)
                ) from e
        profile = await self._require_profile()

        updated = await self.bootstrapper.update_profile(
            profile.id, data.model_dump(exclude_unset=True)
        )
        if updated is None:
            raise UnauthenticatedError("No profile for the current user")
        self._profile = updated
        await self._persist()
        self._publish()
        return updated

    async def complete_onboarding(self) -> Profile:
        """Mark the signed-in actor as having finished onboarding."""
        return await self.update_profile(ProfileUpdate(onboarding_completed=True))

    async def request_password_reset(self, email: str) -> bool:
        """Ask the provider to send a password reset email."""
        sent = await self.provider.reset_password_for_email(email)
        if not sent:
            logger.warning("Password reset request failed", email=email)
        return sent

    async def update_password(self, new_password: str) -> None:
        """
        Change the signed-in actor's password.

        Raises:
            UnauthenticatedError: If there is no valid session
            UpstreamError: If the provider rejects the change
        """
        session = await self.get_valid_session()
        result = await self.provider.update_user(session, password=new_password)
        if not result.success:
            raise UpstreamError(result.error or "Password update failed")
        if result.session is not None and self._is_same_user(result.session):
            self._session = self._session.model_copy(update={"user": result.session.user})
            await self._persist()
