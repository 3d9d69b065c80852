"""
Composition root.

``CRMClient`` owns one state store, one session manager and one data service,
and wires the tenant resolver, audit recorder and entity services around
them. Entity results are mirrored into the store.
"""

from typing import Any, Generic
from uuid import uuid4

from crmcore.auth.bootstrap import ProfileBootstrapper
from crmcore.auth.provider_factory import create_auth_provider
from crmcore.auth.service import AuthProvider
from crmcore.auth.session_manager import SessionLifecycleManager
from crmcore.auth.storage import SessionStorage, create_session_storage
from crmcore.config import get_app_settings
from crmcore.crm.audit import ActivityService, AuditRecorder
from crmcore.crm.schemas import Contact, Deal, Task
from crmcore.crm.service import (
    ContactService,
    CreateT,
    DealService,
    EntityAccessService,
    EntityT,
    TaskService,
    UpdateT,
)
from crmcore.crm.tenant import TenantResolver
from crmcore.db.data_service import DataService
from crmcore.db.data_service_factory import create_data_service
from crmcore.state.store import ClientStateStore
from crmcore.utils.logger import logger


class StoreBackedService(Generic[EntityT, CreateT, UpdateT]):
    """Entity service wrapper that reflects results and status in the store."""

    def __init__(
        self,
        service: EntityAccessService[EntityT, CreateT, UpdateT],
        store: ClientStateStore,
    ):
        self.service = service
        self.store = store
        self.entity_kind = service.entity_kind

    def _key(self, operation: str) -> str:
        # One key per call so overlapping calls of the same operation stay tracked
        return f"{self.entity_kind.value}.{operation}.{uuid4().hex}"

    async def get_all(self) -> list[EntityT]:
        async with self.store.operation(self._key("get_all")):
            entities = await self.service.get_all()
        self.store.replace_entities(self.entity_kind, entities)
        return entities

    async def get_by_id(self, entity_id: str) -> EntityT:
        async with self.store.operation(self._key("get_by_id")):
            entity = await self.service.get_by_id(entity_id)
        self.store.upsert_entity(self.entity_kind, entity)
        return entity

    async def create(self, data: CreateT | dict[str, Any]) -> EntityT:
        async with self.store.operation(self._key("create")):
            entity = await self.service.create(data)
        self.store.upsert_entity(self.entity_kind, entity)
        return entity

    async def update(self, entity_id: str, data: UpdateT | dict[str, Any]) -> EntityT:
        async with self.store.operation(self._key("update")):
            entity = await self.service.update(entity_id, data)
        self.store.upsert_entity(self.entity_kind, entity)
        return entity

    async def delete(self, entity_id: str) -> None:
        async with self.store.operation(self._key("delete")):
            await self.service.delete(entity_id)
        self.store.remove_entity(self.entity_kind, entity_id)


class CRMClient:
    """Everything a presentation layer needs, built around one session."""

    def __init__(
        self,
        data_service: DataService,
        auth_provider: AuthProvider,
        storage: SessionStorage | None = None,
        refresh_margin_seconds: float | None = None,
    ):
        """
        Wire the client.

        Args:
            data_service: Backend data service
            auth_provider: Auth provider
            storage: Session persistence (in-memory when omitted)
            refresh_margin_seconds: Overrides the configured refresh margin
        """
        if refresh_margin_seconds is None:
            refresh_margin_seconds = get_app_settings().session_refresh_margin_seconds

        self.data_service = data_service
        self.auth_provider = auth_provider
        self.store = ClientStateStore()
        self.session = SessionLifecycleManager(
            auth_provider,
            ProfileBootstrapper(data_service),
            storage=storage,
            store=self.store,
            refresh_margin_seconds=refresh_margin_seconds,
        )
        self.tenant_resolver = TenantResolver(data_service)
        self.audit_recorder = AuditRecorder(data_service)

        deps = (data_service, self.tenant_resolver, self.audit_recorder, self.session)
        self.contacts: StoreBackedService[Contact, Any, Any] = StoreBackedService(
            ContactService(*deps), self.store
        )
        self.deals: StoreBackedService[Deal, Any, Any] = StoreBackedService(
            DealService(*deps), self.store
        )
        self.tasks: StoreBackedService[Task, Any, Any] = StoreBackedService(
            TaskService(*deps), self.store
        )
        self.activities = ActivityService(data_service, self.tenant_resolver, self.session)

    @classmethod
    def from_settings(cls) -> "CRMClient":
        """Build a client from environment configuration."""
        client: CRMClient | None = None

        async def access_token() -> str | None:
            return await client.session.access_token() if client else None

        client = cls(
            data_service=create_data_service(access_token_getter=access_token),
            auth_provider=create_auth_provider(),
            storage=create_session_storage(),
        )
        logger.info(
            "CRM client created",
            environment=get_app_settings().environment.value,
            data_backend=get_app_settings().data_backend.value,
        )
        return client

    async def start(self) -> "CRMClient":
        """Restore the session; safe to call more than once."""
        await self.session.initialize()
        return self

    async def close(self) -> None:
        """Terminate the session manager and release connections."""
        await self.session.close()
        await self.data_service.close()
        await self.auth_provider.close()

    async def __aenter__(self) -> "CRMClient":
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
