"""
Entity access services.

One generic service composes tenant resolution, schema translation, the
backend data service and audit recording into single logical CRUD
operations. ``ContactService``, ``DealService`` and ``TaskService`` are its
instantiations.
"""

from datetime import UTC, datetime
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from crmcore.crm.audit import AuditRecorder, MutationContext
from crmcore.crm.constants import (
    COLLECTION_BY_KIND,
    PROFILES_COLLECTION,
    EntityKind,
    Mutation,
    TaskStatus,
)
from crmcore.crm.schemas import (
    Contact,
    ContactCreate,
    ContactUpdate,
    Deal,
    DealCreate,
    DealUpdate,
    EntityRecord,
    InputModel,
    Task,
    TaskCreate,
    TaskUpdate,
)
from crmcore.crm.tenant import ActorSource, TenantResolver, TenantScope
from crmcore.crm.translator import TRANSLATORS, SchemaTranslator
from crmcore.db.data_service import DataService
from crmcore.exceptions import NotFoundError, UnauthorizedError, ValidationFailedError
from crmcore.utils.logger import logger

EntityT = TypeVar("EntityT", bound=EntityRecord)
CreateT = TypeVar("CreateT", bound=InputModel)
UpdateT = TypeVar("UpdateT", bound=InputModel)


def utcnow() -> datetime:
    return datetime.now(UTC)


class EntityAccessService(Generic[EntityT, CreateT, UpdateT]):
    """
    Tenant-scoped CRUD for one entity kind.

    Every operation requires a signed-in actor with an organization. Writes
    always filter on the organization as well as the id, and each successful
    mutation appends exactly one activity record after the write is
    acknowledged.
    """

    entity_kind: ClassVar[EntityKind]
    create_schema: ClassVar[type[InputModel]]
    update_schema: ClassVar[type[InputModel]]
    # Reference fields and the collection each must resolve in, inside the actor's organization
    link_collections: ClassVar[dict[str, str]] = {"assigned_to": PROFILES_COLLECTION}

    def __init__(
        self,
        data_service: DataService,
        tenant_resolver: TenantResolver,
        audit_recorder: AuditRecorder,
        actors: ActorSource,
    ):
        """
        Initialize the service.

        Args:
            data_service: Backend data service
            tenant_resolver: Resolves the actor's organization scope
            audit_recorder: Writes activity records
            actors: Source of the authenticated actor id
        """
        self.data_service = data_service
        self.tenant_resolver = tenant_resolver
        self.audit_recorder = audit_recorder
        self.actors = actors
        self.collection = COLLECTION_BY_KIND[self.entity_kind]
        self.translator: SchemaTranslator = TRANSLATORS[self.entity_kind]

    @property
    def kind(self) -> str:
        return self.entity_kind.value

    async def _scope(self) -> TenantScope:
        return await self.tenant_resolver.resolve_current(self.actors)

    def _validate(self, schema: type[InputModel], data: Any) -> InputModel:
        if isinstance(data, schema):
            return data
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise ValidationFailedError(
                f"Invalid {self.kind} data: {e.error_count()} validation error(s)",
                errors=e.errors(include_url=False),
            ) from e

    def _filters(self, **values: Any) -> dict[str, Any]:
        return {self.translator.column(name): value for name, value in values.items()}

    async def _read(self, entity_id: str) -> EntityT | None:
        row = await self.data_service.select_one(self.collection, self._filters(id=entity_id))
        return self.translator.to_internal(row) if row is not None else None

    def _check_scope(self, entity: EntityT, scope: TenantScope) -> None:
        if entity.organization_id != scope.organization_id:
            logger.warning(
                "Cross-organization access refused",
                entity_kind=self.kind,
                entity_id=entity.id,
                actor_id=scope.actor_id,
            )
            raise UnauthorizedError()

    async def _check_links(self, values: dict[str, Any], scope: TenantScope) -> None:
        """
        Refuse references to records outside the actor's organization.

        A missing target and a target in another organization are reported
        the same way.

        Raises:
            ValidationFailedError: If a reference does not resolve in scope
        """
        for field, collection in self.link_collections.items():
            target_id = values.get(field)
            if target_id is None:
                continue
            row = await self.data_service.select_one(
                collection, {"id": target_id, "organization_id": scope.organization_id}
            )
            if row is None:
                logger.warning(
                    "Reference outside organization refused",
                    entity_kind=self.kind,
                    field=field,
                    target_id=target_id,
                    actor_id=scope.actor_id,
                )
                raise ValidationFailedError(
                    f"Invalid {self.kind} data: {field} does not reference "
                    f"a record in this organization",
                    errors=[{"loc": (field,), "msg": "Unknown reference", "type": "reference"}],
                )

    def _prepare_create(self, values: dict[str, Any], now: datetime) -> dict[str, Any]:
        """Hook for kind-specific values stamped at creation."""
        return values

    def _prepare_update(
        self, before: EntityT, values: dict[str, Any], now: datetime
    ) -> dict[str, Any]:
        """Hook for kind-specific values stamped on update."""
        return values

    async def get_all(self) -> list[EntityT]:
        """
        List the organization's entities, newest first.

        Raises:
            UnauthenticatedError: If there is no session or organization scope
            UpstreamError: If the backend read fails
        """
        scope = await self._scope()
        rows = await self.data_service.select(
            self.collection,
            self._filters(organization_id=scope.organization_id),
            order_by=self.translator.column("created_at"),
            descending=True,
        )
        return [self.translator.to_internal(row) for row in rows]

    async def get_by_id(self, entity_id: str) -> EntityT:
        """
        Fetch one entity.

        Raises:
            NotFoundError: If no entity has that id
            UnauthorizedError: If the entity belongs to another organization
        """
        scope = await self._scope()
        entity = await self._read(entity_id)
        if entity is None:
            raise NotFoundError(self.kind, entity_id)
        self._check_scope(entity, scope)
        return entity

    async def create(self, data: CreateT | dict[str, Any]) -> EntityT:
        """
        Create an entity in the actor's organization.

        The returned entity is read back from the backend, so server-assigned
        defaults are included. A failure to record the activity is logged and
        does not affect the result.

        Args:
            data: Create payload (schema instance or dict, snake_case or camelCase)

        Returns:
            The stored entity

        Raises:
            ValidationFailedError: If the payload is invalid
            UnauthenticatedError: If there is no session or organization scope
            UpstreamError: If the backend write fails
        """
        payload = self._validate(self.create_schema, data)
        scope = await self._scope()

        values = self._prepare_create(payload.model_dump(exclude_unset=True), utcnow())
        await self._check_links(values, scope)
        values["organization_id"] = scope.organization_id
        values["created_by"] = scope.actor_id

        row = await self.data_service.insert(self.collection, self.translator.to_wire(values))
        entity = self.translator.to_internal(row)
        logger.info(
            "Entity created",
            entity_kind=self.kind,
            entity_id=entity.id,
            organization_id=scope.organization_id,
        )

        await self.audit_recorder.record(
            MutationContext(
                actor_id=scope.actor_id,
                organization_id=scope.organization_id,
                entity_kind=self.entity_kind,
                mutation=Mutation.CREATE,
                after=entity,
            )
        )
        return entity

    async def update(self, entity_id: str, data: UpdateT | dict[str, Any]) -> EntityT:
        """
        Apply a sparse patch.

        Only fields present in ``data`` are written; explicit empty values are
        written as given. ``updated_at`` is always stamped.

        Args:
            entity_id: Entity id
            data: Patch payload

        Returns:
            The entity as stored after the update

        Raises:
            ValidationFailedError: If the patch is invalid
            NotFoundError: If no entity has that id
            UnauthorizedError: If the entity belongs to another organization
            UpstreamError: If the backend write fails
        """
        patch = self._validate(self.update_schema, data).model_dump(exclude_unset=True)
        scope = await self._scope()

        before = await self._read(entity_id)
        if before is None:
            raise NotFoundError(self.kind, entity_id)
        self._check_scope(before, scope)
        await self._check_links(patch, scope)

        now = utcnow()
        values = self._prepare_update(before, patch, now)
        values["updated_at"] = now

        rows = await self.data_service.update(
            self.collection,
            self._filters(id=entity_id, organization_id=scope.organization_id),
            self.translator.to_wire(values),
        )
        if not rows:
            # Deleted between the pre-read and the write
            raise NotFoundError(self.kind, entity_id)
        after = self.translator.to_internal(rows[0])
        logger.info(
            "Entity updated",
            entity_kind=self.kind,
            entity_id=entity_id,
            fields=sorted(patch),
        )

        await self.audit_recorder.record(
            MutationContext(
                actor_id=scope.actor_id,
                organization_id=scope.organization_id,
                entity_kind=self.entity_kind,
                mutation=Mutation.UPDATE,
                before=before,
                after=after,
            )
        )
        return after

    async def delete(self, entity_id: str) -> None:
        """
        Delete an entity. Deleting an id that does not exist is a no-op.

        Raises:
            UnauthorizedError: If the entity belongs to another organization
            UpstreamError: If the backend call fails
        """
        scope = await self._scope()

        before = await self._read(entity_id)
        if before is None:
            logger.info("Entity already absent", entity_kind=self.kind, entity_id=entity_id)
            return
        self._check_scope(before, scope)

        removed = await self.data_service.delete(
            self.collection,
            self._filters(id=entity_id, organization_id=scope.organization_id),
        )
        if not removed:
            return
        logger.info("Entity deleted", entity_kind=self.kind, entity_id=entity_id)

        await self.audit_recorder.record(
            MutationContext(
                actor_id=scope.actor_id,
                organization_id=scope.organization_id,
                entity_kind=self.entity_kind,
                mutation=Mutation.DELETE,
                before=before,
            )
        )


class ContactService(EntityAccessService[Contact, ContactCreate, ContactUpdate]):
    entity_kind = EntityKind.CONTACT
    create_schema = ContactCreate
    update_schema = ContactUpdate


class DealService(EntityAccessService[Deal, DealCreate, DealUpdate]):
    entity_kind = EntityKind.DEAL
    create_schema = DealCreate
    update_schema = DealUpdate
    link_collections = {
        **EntityAccessService.link_collections,
        "contact_id": COLLECTION_BY_KIND[EntityKind.CONTACT],
    }


class TaskService(EntityAccessService[Task, TaskCreate, TaskUpdate]):
    """Tasks additionally get a completion timestamp the caller cannot set."""

    entity_kind = EntityKind.TASK
    create_schema = TaskCreate
    update_schema = TaskUpdate
    link_collections = {
        **EntityAccessService.link_collections,
        "contact_id": COLLECTION_BY_KIND[EntityKind.CONTACT],
        "deal_id": COLLECTION_BY_KIND[EntityKind.DEAL],
    }

    def _prepare_create(self, values: dict[str, Any], now: datetime) -> dict[str, Any]:
        if values.get("status") == TaskStatus.COMPLETED:
            values["completed_at"] = now
        return values

    def _prepare_update(
        self, before: Task, values: dict[str, Any], now: datetime
    ) -> dict[str, Any]:
        # Only the first transition into completed is stamped
        if (
            values.get("status") == TaskStatus.COMPLETED
            and before.status != TaskStatus.COMPLETED
        ):
            values["completed_at"] = now
        return values
