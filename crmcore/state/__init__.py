"""Client-side state store."""

from crmcore.state.store import ClientState, ClientStateStore

__all__ = ["ClientState", "ClientStateStore"]
