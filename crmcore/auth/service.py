"""
Authentication providers.

This module defines the AuthProvider interface and two implementations: a
GoTrue client over httpx and an in-memory provider for local development
and tests.
"""

import inspect
import secrets
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import httpx

from crmcore.auth import schemas
from crmcore.auth.constants import AuthChangeEvent, GoTrueEndpoints, TimeInSeconds
from crmcore.auth.dataclasses import AuthResult, SignUpData
from crmcore.exceptions import UpstreamError
from crmcore.utils.logger import logger

AuthListener = Callable[
    [AuthChangeEvent, schemas.Session | None], Awaitable[None] | None
]


class AuthProvider(ABC):
    """Abstract interface for authentication providers.

    Besides request/response calls, a provider pushes session change
    notifications to listeners registered with ``on_auth_state_change``.
    """

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """
        Register a session change listener.

        Returns:
            A callable that unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(
        self, event: AuthChangeEvent, session: schemas.Session | None
    ) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth state listener failed", auth_event=event.value)

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Sign in a user with email and password."""
        pass

    @abstractmethod
    async def sign_up(self, data: SignUpData) -> AuthResult:
        """Register a new user."""
        pass

    @abstractmethod
    async def sign_out(self, access_token: str) -> bool:
        """Sign out a user."""
        pass

    @abstractmethod
    async def get_user(self, access_token: str) -> schemas.User | None:
        """Get the user an access token belongs to, or None if it is invalid."""
        pass

    @abstractmethod
    async def refresh_session(self, refresh_token: str) -> AuthResult:
        """Exchange a refresh token for a new session."""
        pass

    @abstractmethod
    async def reset_password_for_email(self, email: str) -> bool:
        """Send a password reset email."""
        pass

    @abstractmethod
    async def update_user(
        self,
        session: schemas.Session,
        *,
        password: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> AuthResult:
        """Update the signed-in user's password or metadata."""
        pass

    async def close(self) -> None:
        """Release any resources held by the provider."""
        pass


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _user_from_body(body: dict[str, Any]) -> schemas.User:
    return schemas.User(
        id=body["id"],
        email=body.get("email") or "",
        email_verified=bool(body.get("email_confirmed_at") or body.get("confirmed_at")),
        user_metadata=body.get("user_metadata") or {},
        created_at=_parse_timestamp(body.get("created_at")),
    )


def _session_from_body(body: dict[str, Any]) -> schemas.Session:
    if body.get("expires_at"):
        expires_at = datetime.fromtimestamp(int(body["expires_at"]), UTC)
    else:
        expires_at = datetime.now(UTC) + timedelta(
            seconds=int(body.get("expires_in") or TimeInSeconds.ONE_HOUR)
        )
    return schemas.Session(
        user=_user_from_body(body["user"]),
        access_token=body["access_token"],
        refresh_token=body["refresh_token"],
        expires_at=expires_at,
        token_type=body.get("token_type") or "bearer",
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if not isinstance(body, dict):
        return f"HTTP {response.status_code}"
    return (
        body.get("error_description")
        or body.get("msg")
        or body.get("message")
        or body.get("error")
        or f"HTTP {response.status_code}"
    )


class GoTrueAuthProvider(AuthProvider):
    """GoTrue (Supabase Auth) implementation of AuthProvider."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            base_url: Project URL; endpoints live under ``/auth/v1``
            api_key: API key sent as the ``apikey`` header
            timeout: Request timeout in seconds
            transport: Optional transport override (used in tests)
        """
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        logger.info("GoTrueAuthProvider initialized", gotrue_url=self.base_url)

    def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["apikey"] = self.api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        endpoint: GoTrueEndpoints,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        access_token: str | None = None,
    ) -> httpx.Response:
        """Make a request to the auth API.

        Raises:
            UpstreamError: If the request cannot be completed
        """
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        try:
            return await self._ensure_client().request(
                method, endpoint.value, params=params, json=json, headers=headers
            )
        except httpx.RequestError as e:
            logger.error("Auth API request failed", endpoint=endpoint.value, error=str(e))
            raise UpstreamError(f"Request error: {e}", original_error=e) from e

    async def _token_grant(self, grant_type: str, payload: dict[str, Any]) -> AuthResult:
        try:
            response = await self._request(
                "POST", GoTrueEndpoints.TOKEN, params={"grant_type": grant_type}, json=payload
            )
        except UpstreamError as e:
            return AuthResult(success=False, error=e.message)

        if response.status_code != 200:
            return AuthResult(success=False, error=_error_message(response))
        try:
            return AuthResult(success=True, session=_session_from_body(response.json()))
        except (KeyError, ValueError, TypeError) as e:
            logger.error("Invalid token response", grant_type=grant_type, error=str(e))
            return AuthResult(success=False, error="Invalid response from auth service")

    async def sign_in(self, email: str, password: str) -> AuthResult:
        result = await self._token_grant("password", {"email": email, "password": password})
        if result.success:
            await self._emit(AuthChangeEvent.SIGNED_IN, result.session)
        return result

    async def sign_up(self, data: SignUpData) -> AuthResult:
        try:
            response = await self._request(
                "POST",
                GoTrueEndpoints.SIGNUP,
                json={"email": data.email, "password": data.password, "data": data.metadata()},
            )
        except UpstreamError as e:
            return AuthResult(success=False, error=e.message)

        if response.status_code not in (200, 201):
            return AuthResult(success=False, error=_error_message(response))

        body = response.json()
        if body.get("access_token"):
            session = _session_from_body(body)
            await self._emit(AuthChangeEvent.SIGNED_IN, session)
            return AuthResult(success=True, session=session, user=session.user)

        # Email confirmation pending: the body is the user (or wraps it)
        user = _user_from_body(body.get("user") or body)
        return AuthResult(success=True, user=user, requires_confirmation=True)

    async def sign_out(self, access_token: str) -> bool:
        response = await self._request(
            "POST", GoTrueEndpoints.LOGOUT, access_token=access_token
        )
        if response.status_code >= 400:
            logger.warning(
                "Auth API sign-out rejected",
                status_code=response.status_code,
                error=_error_message(response),
            )
            return False
        await self._emit(AuthChangeEvent.SIGNED_OUT, None)
        return True

    async def get_user(self, access_token: str) -> schemas.User | None:
        try:
            response = await self._request(
                "GET", GoTrueEndpoints.USER, access_token=access_token
            )
        except UpstreamError:
            return None
        if response.status_code != 200:
            return None
        return _user_from_body(response.json())

    async def refresh_session(self, refresh_token: str) -> AuthResult:
        result = await self._token_grant("refresh_token", {"refresh_token": refresh_token})
        if result.success:
            await self._emit(AuthChangeEvent.TOKEN_REFRESHED, result.session)
        return result

    async def reset_password_for_email(self, email: str) -> bool:
        try:
            response = await self._request(
                "POST", GoTrueEndpoints.RECOVER, json={"email": email}
            )
        except UpstreamError:
            return False
        return response.status_code < 400

    async def update_user(
        self,
        session: schemas.Session,
        *,
        password: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> AuthResult:
        payload: dict[str, Any] = {}
        if password is not None:
            payload["password"] = password
        if data is not None:
            payload["data"] = data
        try:
            response = await self._request(
                "PUT", GoTrueEndpoints.USER, json=payload, access_token=session.access_token
            )
        except UpstreamError as e:
            return AuthResult(success=False, error=e.message)

        if response.status_code != 200:
            return AuthResult(success=False, error=_error_message(response))
        user = _user_from_body(response.json())
        updated = session.model_copy(update={"user": user})
        await self._emit(AuthChangeEvent.USER_UPDATED, updated)
        return AuthResult(success=True, session=updated, user=user)


@dataclass
class _Account:
    user: schemas.User
    password: str


class InMemoryAuthProvider(AuthProvider):
    """In-process AuthProvider for testing and local development.

    Accounts and tokens live in dictionaries. ``emit`` simulates
    notifications from another client (another tab signing in or out).
    """

    def __init__(
        self,
        *,
        session_ttl_seconds: int = TimeInSeconds.ONE_HOUR,
        require_confirmation: bool = False,
    ) -> None:
        super().__init__()
        self.session_ttl_seconds = session_ttl_seconds
        self.require_confirmation = require_confirmation
        self.fail_sign_out = False
        self.refresh_calls = 0
        self.password_resets: list[str] = []
        self._accounts: dict[str, _Account] = {}
        self._access_tokens: dict[str, tuple[str, datetime]] = {}
        self._refresh_tokens: dict[str, str] = {}

    def _account_for(self, user_id: str) -> _Account | None:
        return next(
            (account for account in self._accounts.values() if account.user.id == user_id),
            None,
        )

    def issue_session(self, user_id: str, ttl_seconds: int | None = None) -> schemas.Session:
        """Mint a session for an existing user without any notification."""
        account = self._account_for(user_id)
        if account is None:
            raise KeyError(user_id)
        ttl = self.session_ttl_seconds if ttl_seconds is None else ttl_seconds
        access_token = secrets.token_urlsafe(24)
        refresh_token = secrets.token_urlsafe(24)
        expires_at = datetime.now(UTC) + timedelta(seconds=ttl)
        self._access_tokens[access_token] = (user_id, expires_at)
        self._refresh_tokens[refresh_token] = user_id
        return schemas.Session(
            user=account.user,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    def expire_session(self, access_token: str) -> None:
        """Make an access token expired immediately."""
        user_id, _ = self._access_tokens[access_token]
        self._access_tokens[access_token] = (user_id, datetime.now(UTC) - timedelta(seconds=1))

    def revoke_refresh_tokens(self, user_id: str) -> None:
        """Invalidate every refresh token of a user."""
        for token in [t for t, uid in self._refresh_tokens.items() if uid == user_id]:
            del self._refresh_tokens[token]

    async def emit(
        self, event: AuthChangeEvent, session: schemas.Session | None = None
    ) -> None:
        """Push a notification to every listener."""
        await self._emit(event, session)

    async def sign_in(self, email: str, password: str) -> AuthResult:
        account = self._accounts.get(email.lower())
        if account is None or account.password != password:
            return AuthResult(success=False, error="Invalid login credentials")
        session = self.issue_session(account.user.id)
        await self._emit(AuthChangeEvent.SIGNED_IN, session)
        return AuthResult(success=True, session=session, user=session.user)

    async def sign_up(self, data: SignUpData) -> AuthResult:
        email = data.email.lower()
        if email in self._accounts:
            return AuthResult(success=False, error="User already registered")
        user = schemas.User(
            id=str(uuid4()),
            email=email,
            email_verified=not self.require_confirmation,
            user_metadata=data.metadata(),
            created_at=datetime.now(UTC),
        )
        self._accounts[email] = _Account(user=user, password=data.password)
        if self.require_confirmation:
            return AuthResult(success=True, user=user, requires_confirmation=True)
        session = self.issue_session(user.id)
        await self._emit(AuthChangeEvent.SIGNED_IN, session)
        return AuthResult(success=True, session=session, user=user)

    async def sign_out(self, access_token: str) -> bool:
        if self.fail_sign_out:
            raise UpstreamError("Sign-out failed", status_code=503)
        entry = self._access_tokens.pop(access_token, None)
        if entry is not None:
            self.revoke_refresh_tokens(entry[0])
        await self._emit(AuthChangeEvent.SIGNED_OUT, None)
        return True

    async def get_user(self, access_token: str) -> schemas.User | None:
        entry = self._access_tokens.get(access_token)
        if entry is None:
            return None
        user_id, expires_at = entry
        if expires_at <= datetime.now(UTC):
            return None
        account = self._account_for(user_id)
        return account.user if account else None

    async def refresh_session(self, refresh_token: str) -> AuthResult:
        self.refresh_calls += 1
        user_id = self._refresh_tokens.pop(refresh_token, None)
        if user_id is None:
            return AuthResult(success=False, error="Invalid Refresh Token")
        session = self.issue_session(user_id)
        await self._emit(AuthChangeEvent.TOKEN_REFRESHED, session)
        return AuthResult(success=True, session=session, user=session.user)

    async def reset_password_for_email(self, email: str) -> bool:
        self.password_resets.append(email.lower())
        return True

    async def update_user(
        self,
        session: schemas.Session,
        *,
        password: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> AuthResult:
        user = await self.get_user(session.access_token)
        account = self._account_for(user.id) if user else None
        if account is None:
            return AuthResult(success=False, error="Invalid session")
        if password is not None:
            account.password = password
        if data is not None:
            account.user = account.user.model_copy(
                update={"user_metadata": {**account.user.user_metadata, **data}}
            )
        updated = session.model_copy(update={"user": account.user})
        await self._emit(AuthChangeEvent.USER_UPDATED, updated)
        return AuthResult(success=True, session=updated, user=account.user)
