"""Exception hierarchy shared by the session, tenant, audit and entity layers."""

from typing import Any


class CRMError(Exception):
    """Base exception for all crmcore errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnauthenticatedError(CRMError):
    """Raised when there is no valid session or no resolvable organization scope."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class UnauthorizedError(CRMError):
    """Raised when an entity belongs to a different organization than the actor."""

    def __init__(self, message: str = "Access denied: different organization") -> None:
        super().__init__(message)


class NotFoundError(CRMError):
    """Raised when an entity id does not resolve."""

    def __init__(self, entity_kind: str, entity_id: str) -> None:
        super().__init__(f"{entity_kind.capitalize()} not found: {entity_id}")
        self.entity_kind = entity_kind
        self.entity_id = entity_id


class ValidationFailedError(CRMError):
    """Raised when a payload does not satisfy the entity schema."""

    def __init__(
        self, message: str, errors: list[dict[str, Any]] | None = None
    ) -> None:
        super().__init__(message)
        self.errors = errors or []


class UpstreamError(CRMError):
    """Raised when the backend data or auth service reports a failure."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.original_error = original_error

    def __str__(self) -> str:
        if self.status_code:
            return f"Upstream error ({self.status_code}): {self.message}"
        return f"Upstream error: {self.message}"


class ConflictError(UpstreamError):
    """Raised when a write violates a unique or integrity constraint."""

    pass


class SessionStateError(CRMError):
    """Raised when a session operation is not valid in the current state."""

    pass
