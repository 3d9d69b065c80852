from enum import Enum


class Role(str, Enum):
    """Actor roles inside an organization."""

    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"
    AGENT = "agent"


class SubscriptionPlan(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class AuthProviderName(str, Enum):
    """Supported auth provider backends."""

    GOTRUE = "gotrue"
    MEMORY = "memory"


class AuthChangeEvent(str, Enum):
    """Session change notifications pushed by the auth provider."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class SessionState(str, Enum):
    """States of the session lifecycle."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"
    TERMINATED = "terminated"


class GoTrueEndpoints(str, Enum):
    """GoTrue auth API endpoints."""

    TOKEN = "/auth/v1/token"
    SIGNUP = "/auth/v1/signup"
    LOGOUT = "/auth/v1/logout"
    USER = "/auth/v1/user"
    RECOVER = "/auth/v1/recover"


class TimeInSeconds(int):
    """Time constants in seconds."""

    ONE_HOUR = 3600


# Consumer mailbox domains never name an organization
FREE_EMAIL_DOMAINS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "hotmail.com",
        "outlook.com",
        "live.com",
        "icloud.com",
        "me.com",
        "aol.com",
        "proton.me",
        "protonmail.com",
    }
)
