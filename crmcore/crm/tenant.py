"""Resolution of the organization scope for an authenticated actor."""

from dataclasses import dataclass
from typing import Protocol

from crmcore.crm.constants import PROFILES_COLLECTION
from crmcore.db.data_service import DataService
from crmcore.exceptions import UnauthenticatedError
from crmcore.utils.logger import logger


class ActorSource(Protocol):
    """Anything that can name the authenticated actor (the session manager)."""

    async def require_actor_id(self) -> str: ...


@dataclass(frozen=True)
class TenantScope:
    """Actor and organization every read and write is confined to."""

    actor_id: str
    organization_id: str


class TenantResolver:
    """Looks up the actor's profile to find their organization.

    Fails closed: an actor without a profile or organization gets no scope.
    """

    def __init__(self, data_service: DataService):
        self.data_service = data_service

    async def resolve(self, actor_id: str) -> TenantScope:
        """
        Resolve the organization scope for an actor.

        Args:
            actor_id: Authenticated actor (profile) id

        Returns:
            TenantScope for the actor

        Raises:
            UnauthenticatedError: If no profile or organization is found
            UpstreamError: If the profile lookup fails
        """
        profile = await self.data_service.select_one(
            PROFILES_COLLECTION, {"id": actor_id}
        )
        organization_id = profile.get("organization_id") if profile else None
        if not organization_id:
            logger.warning("No organization scope for actor", actor_id=actor_id)
            raise UnauthenticatedError("No organization found for user")
        return TenantScope(actor_id=actor_id, organization_id=organization_id)

    async def resolve_current(self, actors: ActorSource) -> TenantScope:
        """Resolve the scope of whoever is currently signed in."""
        return await self.resolve(await actors.require_actor_id())
