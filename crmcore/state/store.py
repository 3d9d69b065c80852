"""
Client-side state store.

The store holds one immutable ``ClientState`` snapshot. Every change builds a
new snapshot and swaps it in, so readers can keep a reference without locking
and concurrent writers to the same entity resolve as last write wins.
"""

import dataclasses
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from crmcore.auth.constants import SessionState
from crmcore.auth.schemas import Actor
from crmcore.crm.constants import EntityKind
from crmcore.utils.logger import logger

StateListener = Callable[["ClientState"], None]


def _frozen_mapping(
    data: Mapping[EntityKind, tuple[Any, ...]] | None = None,
) -> Mapping[EntityKind, tuple[Any, ...]]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class ClientState:
    """Snapshot of the current actor, cached entities and operation status."""

    actor: Actor | None = None
    session_state: SessionState = SessionState.UNINITIALIZED
    entities: Mapping[EntityKind, tuple[Any, ...]] = field(default_factory=_frozen_mapping)
    in_flight: frozenset[str] = frozenset()
    last_error: str | None = None

    @property
    def loading(self) -> bool:
        return bool(self.in_flight)

    def entities_of(self, kind: EntityKind) -> tuple[Any, ...]:
        """Cached entities of one kind, newest first."""
        return self.entities.get(EntityKind(kind), ())


class ClientStateStore:
    """Owner of the current ``ClientState`` snapshot."""

    def __init__(self, initial: ClientState | None = None):
        self._state = initial or ClientState()
        self._listeners: list[StateListener] = []

    @property
    def snapshot(self) -> ClientState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Call ``listener`` with every new snapshot.

        Returns:
            A callable that unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _replace(self, **changes: Any) -> ClientState:
        self._state = dataclasses.replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("State listener failed")
        return self._state

    def _with_entities(self, kind: EntityKind, items: Iterable[Any]) -> ClientState:
        entities = dict(self._state.entities)
        entities[EntityKind(kind)] = tuple(items)
        return self._replace(entities=_frozen_mapping(entities))

    def set_actor(
        self, actor: Actor | None, session_state: SessionState | None = None
    ) -> ClientState:
        changes: dict[str, Any] = {"actor": actor}
        if session_state is not None:
            changes["session_state"] = session_state
        return self._replace(**changes)

    def replace_entities(self, kind: EntityKind, items: Iterable[Any]) -> ClientState:
        """Replace the cached list for a kind (already ordered newest first)."""
        return self._with_entities(kind, items)

    def upsert_entity(self, kind: EntityKind, entity: Any) -> ClientState:
        """Replace a cached entity in place, or add it as the newest."""
        current = self._state.entities_of(kind)
        if any(item.id == entity.id for item in current):
            items = [entity if item.id == entity.id else item for item in current]
        else:
            items = [entity, *current]
        return self._with_entities(kind, items)

    def remove_entity(self, kind: EntityKind, entity_id: str) -> ClientState:
        current = self._state.entities_of(kind)
        return self._with_entities(kind, [item for item in current if item.id != entity_id])

    def reset(self, session_state: SessionState = SessionState.ANONYMOUS) -> ClientState:
        """Drop the actor, every cached entity and operation status."""
        self._state = ClientState(session_state=session_state)
        return self._replace()

    @asynccontextmanager
    async def operation(self, key: str) -> AsyncIterator[None]:
        """
        Track an operation as in flight and record its failure, if any.

        The exception is re-raised after being recorded as ``last_error``.
        """
        self._replace(in_flight=self._state.in_flight | {key}, last_error=None)
        try:
            yield
        except Exception as e:
            self._replace(last_error=str(e))
            raise
        finally:
            self._replace(in_flight=self._state.in_flight - {key})
