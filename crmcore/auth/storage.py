"""
Persistence of the session and cached profile between runs.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from crmcore.auth.schemas import PersistedAuthState
from crmcore.config import get_app_settings
from crmcore.utils.logger import logger


class SessionStorage(ABC):
    """Where the session manager keeps its state between runs."""

    @abstractmethod
    async def load(self) -> PersistedAuthState | None:
        """Load the persisted state, or None if there is none."""
        pass

    @abstractmethod
    async def save(self, state: PersistedAuthState) -> None:
        """Replace the persisted state."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Forget the persisted state."""
        pass


class InMemorySessionStorage(SessionStorage):
    """Keeps the state for the lifetime of the process."""

    def __init__(self, state: PersistedAuthState | None = None):
        self._state = state

    async def load(self) -> PersistedAuthState | None:
        return self._state

    async def save(self, state: PersistedAuthState) -> None:
        self._state = state

    async def clear(self) -> None:
        self._state = None


class FileSessionStorage(SessionStorage):
    """Keeps the state as a JSON document on disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def load(self) -> PersistedAuthState | None:
        if not self.path.exists():
            return None
        try:
            return PersistedAuthState.model_validate_json(self.path.read_text())
        except (OSError, ValidationError) as e:
            logger.warning(
                "Ignoring unreadable session file", path=str(self.path), error=str(e)
            )
            return None

    async def save(self, state: PersistedAuthState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(state.model_dump_json())
        tmp_path.replace(self.path)

    async def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def create_session_storage() -> SessionStorage:
    """File storage when a path is configured, otherwise in-memory."""
    path = get_app_settings().session_storage_path
    if path:
        return FileSessionStorage(path)
    return InMemorySessionStorage()
